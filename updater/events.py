"""Lifecycle events, the addon contract and the event dispatcher."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import ClassVar

from .errors import AddonError
from .models import PackageChange, PatchUpdates
from .repo import Worktree

logger = logging.getLogger(__name__)

PRE_DEPENDENCY_UPDATE = "pre-dependency-update"
POST_DEPENDENCY_UPDATE = "post-dependency-update"
PRE_SITE_UPDATE = "pre-site-update"
POST_SITE_UPDATE = "post-site-update"
PRE_REPORT_CREATE = "pre-report-create"

PRIORITY_MIN = -100
PRIORITY_LOW = -50
PRIORITY_NORMAL = 0
PRIORITY_HIGH = 50
PRIORITY_MAX = 100


@dataclass
class Event:
    """Base event; every event carries the project directory and worktree."""

    name: ClassVar[str]

    path: str
    worktree: Worktree


@dataclass
class PreDependencyUpdateEvent(Event):
    name: ClassVar[str] = PRE_DEPENDENCY_UPDATE

    packages_to_update: list[str] = field(default_factory=list)
    packages_to_keep: list[str] = field(default_factory=list)
    minimal_changes: bool = False
    patch_updates: PatchUpdates = field(default_factory=PatchUpdates)
    abort: bool = False


@dataclass
class PostDependencyUpdateEvent(Event):
    name: ClassVar[str] = POST_DEPENDENCY_UPDATE

    changes: list[PackageChange] = field(default_factory=list)


@dataclass
class PreSiteUpdateEvent(Event):
    name: ClassVar[str] = PRE_SITE_UPDATE

    site: str


@dataclass
class PostSiteUpdateEvent(Event):
    name: ClassVar[str] = POST_SITE_UPDATE

    site: str


@dataclass
class PreReportCreateEvent(Event):
    name: ClassVar[str] = PRE_REPORT_CREATE

    title: str


Handler = Callable[[Event], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    handler: Handler
    priority: int = PRIORITY_NORMAL


class Addon:
    """Base class for workflow addons.

    Addons subscribe handlers to lifecycle events and may contribute a
    markdown fragment to the merge request description.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    def subscriptions(self) -> dict[str, Subscription]:
        return {}

    def render_report(self) -> str:
        """Markdown fragment for the description, empty for none."""
        return ""


class EventDispatcher:
    """Delivers events to addon handlers, highest priority first.

    Handlers of equal priority run in registration order. Only one event is
    dispatched at a time, even when sites are updated concurrently.
    """

    def __init__(self, addons: list[Addon] | None = None):
        self._listeners: dict[str, list[tuple[int, int, Addon, Handler]]] = {}
        self._counter = 0
        self._lock = asyncio.Lock()
        for addon in addons or []:
            self.register(addon)

    def register(self, addon: Addon) -> None:
        for event_name, subscription in addon.subscriptions().items():
            listeners = self._listeners.setdefault(event_name, [])
            listeners.append((subscription.priority, self._counter, addon, subscription.handler))
            listeners.sort(key=lambda item: (-item[0], item[1]))
            self._counter += 1

    def listeners(self, event_name: str) -> list[Handler]:
        return [handler for _, _, _, handler in self._listeners.get(event_name, [])]

    async def dispatch(self, event: Event) -> Event:
        """Run every handler subscribed to the event, one after another.

        Raises:
            AddonError: A handler failed; later handlers do not run
        """
        async with self._lock:
            for _, _, addon, handler in self._listeners.get(event.name, []):
                logger.debug("Dispatching %s to %s", event.name, addon.name)
                try:
                    await handler(event)
                except AddonError:
                    raise
                except Exception as e:
                    raise AddonError(addon.name, event.name, e) from e
        return event
