"""Code-hosting platform clients (GitLab and GitHub)."""

import logging
from urllib.parse import quote, urlparse

import httpx

from .errors import CodeHostingError
from .models import MergeRequest

logger = logging.getLogger(__name__)

DRUPALCODE_URL = "https://git.drupalcode.org"


class Platform:
    """Operations the updater needs from the platform hosting the project."""

    def __init__(self, token: str, timeout: float = 30.0):
        self.token = token
        self.timeout = timeout

    async def create_merge_request(
        self, title: str, body: str, source_branch: str, target_branch: str
    ) -> MergeRequest:
        raise NotImplementedError

    async def download_file(self, branch: str, path: str) -> bytes:
        raise NotImplementedError

    async def get_user(self) -> tuple[str, str]:
        """Name and email of the token's owner."""
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        return {}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers()) as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
        except httpx.TimeoutException as e:
            raise CodeHostingError(f"Timeout calling {method} {url}") from e
        except httpx.HTTPStatusError as e:
            raise CodeHostingError(
                f"HTTP error {e.response.status_code} calling {method} {url}: {e.response.text[:500]}"
            ) from e
        except httpx.HTTPError as e:
            raise CodeHostingError(f"Network error calling {method} {url}: {e}") from e


class GitLab(Platform):
    """GitLab REST API v4 client.

    Also used against git.drupalcode.org to look up upstream commits and
    issue fork merge requests.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        project_path: str | None = None,
        timeout: float = 30.0,
    ):
        super().__init__(token, timeout)
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/v4"
        self.project_path = project_path

    @classmethod
    def from_repository_url(cls, repository_url: str, token: str) -> "GitLab":
        parsed = urlparse(repository_url)
        project_path = parsed.path.strip("/").removesuffix(".git")
        return cls(f"{parsed.scheme}://{parsed.netloc}", token, project_path)

    def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self.token} if self.token else {}

    def _project_url(self, project: str | int | None = None) -> str:
        project = project if project is not None else self.project_path
        if project is None:
            raise CodeHostingError("No GitLab project configured")
        return f"{self.api_url}/projects/{quote(str(project), safe='')}"

    async def create_merge_request(
        self, title: str, body: str, source_branch: str, target_branch: str
    ) -> MergeRequest:
        response = await self._request(
            "POST",
            f"{self._project_url()}/merge_requests",
            json={
                "source_branch": source_branch,
                "target_branch": target_branch,
                "title": title,
                "description": body,
            },
        )
        data = response.json()
        return MergeRequest(id=data["iid"], url=data["web_url"])

    async def download_file(self, branch: str, path: str) -> bytes:
        response = await self._request(
            "GET",
            f"{self._project_url()}/repository/files/{quote(path, safe='')}/raw",
            params={"ref": branch},
        )
        return response.content

    async def get_user(self) -> tuple[str, str]:
        data = (await self._request("GET", f"{self.api_url}/user")).json()
        return data.get("name") or data.get("username", ""), data.get("email") or data.get("public_email", "")

    async def search_commits(self, project: str, query: str, ref: str) -> list[dict]:
        """Commits of a project on ref whose message matches query."""
        response = await self._request(
            "GET",
            f"{self._project_url(project)}/search",
            params={"scope": "commits", "search": query, "ref": ref},
        )
        return response.json()

    async def get_project(self, path: str) -> dict:
        return (await self._request("GET", self._project_url(path))).json()

    async def find_merge_requests_by_source_project(
        self, project: str, source_project_id: int
    ) -> list[dict]:
        """Merge requests on project opened from the given source project."""
        response = await self._request(
            "GET",
            f"{self._project_url(project)}/merge_requests",
            params={"source_project_id": source_project_id},
        )
        return response.json()

    async def fetch(self, url: str) -> bytes:
        """Download an arbitrary URL on this GitLab instance."""
        return (await self._request("GET", url, follow_redirects=True)).content


class GitHub(Platform):
    """GitHub REST API client."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
    ):
        super().__init__(token, timeout)
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")

    @classmethod
    def from_repository_url(cls, repository_url: str, token: str) -> "GitHub":
        parts = urlparse(repository_url).path.strip("/").removesuffix(".git").split("/")
        if len(parts) < 2:
            raise CodeHostingError(f"Cannot determine owner and repository from {repository_url}")
        return cls(parts[0], parts[1], token)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @property
    def _repo_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}"

    async def create_merge_request(
        self, title: str, body: str, source_branch: str, target_branch: str
    ) -> MergeRequest:
        response = await self._request(
            "POST",
            f"{self._repo_url}/pulls",
            json={"title": title, "body": body, "head": source_branch, "base": target_branch},
        )
        data = response.json()
        return MergeRequest(id=data["number"], url=data["html_url"])

    async def download_file(self, branch: str, path: str) -> bytes:
        response = await self._request(
            "GET",
            f"{self._repo_url}/contents/{quote(path)}",
            params={"ref": branch},
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        return response.content

    async def get_user(self) -> tuple[str, str]:
        data = (await self._request("GET", f"{self.api_url}/user")).json()
        return data.get("name") or data.get("login", ""), data.get("email") or ""


def create_platform(repository_url: str, token: str) -> Platform:
    """Pick the platform client for a repository URL."""
    if "github" in urlparse(repository_url).netloc:
        return GitHub.from_repository_url(repository_url, token)
    return GitLab.from_repository_url(repository_url, token)
