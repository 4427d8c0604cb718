"""drupal.org issue tracker client."""

import logging
import re

import httpx
from pydantic import ValidationError

from .errors import IssueTrackerError
from .models import Issue

logger = logging.getLogger(__name__)

ISSUE_NUMBER_PATTERN = re.compile(r"\d{6,}")


class DrupalOrgClient:
    """Fetches issues from the drupal.org REST API."""

    def __init__(self, base_url: str = "https://www.drupal.org", timeout: float = 30.0):
        """Initialize the client.

        Args:
            base_url: drupal.org base URL
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._cache: dict[str, Issue] = {}

    def find_issue_number(self, text: str) -> str | None:
        """First run of six or more digits in text, if any."""
        match = ISSUE_NUMBER_PATTERN.search(text or "")
        return match.group(0) if match else None

    async def get_issue(self, issue_id: str) -> Issue:
        """Fetch an issue by node id.

        Args:
            issue_id: Issue node id

        Returns:
            The issue
        """
        # Check cache first
        if issue_id in self._cache:
            return self._cache[issue_id]

        url = f"{self.base_url}/api-d7/node/{issue_id}.json"
        logger.debug("Fetching issue %s", issue_id)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                issue = Issue.model_validate(response.json())
        except httpx.TimeoutException as e:
            raise IssueTrackerError(f"Timeout fetching issue {issue_id}") from e
        except httpx.HTTPStatusError as e:
            raise IssueTrackerError(f"HTTP error fetching issue {issue_id}: {e}") from e
        except httpx.HTTPError as e:
            raise IssueTrackerError(f"Network error fetching issue {issue_id}: {e}") from e
        except (ValueError, ValidationError) as e:
            raise IssueTrackerError(f"Invalid issue data for {issue_id}: {e}") from e

        self._cache[issue_id] = issue
        return issue
