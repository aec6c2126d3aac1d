"""Debounced and periodic auto-save for editor content.

:class:`AutoSaveScheduler` watches a value that changes over time and calls an
async ``save_function`` with it. A save is triggered either when the value has
been quiet for ``save_delay_ms`` after the last change (provided enough changes
accumulated) or by a fixed ``interval_ms`` tick whenever the value differs from
what was last saved, whichever comes first.

The scheduler runs on an asyncio event loop. Saves on one scheduler never
overlap: ``is_saving`` is checked and set without a suspension point in between,
so a second trigger that arrives while a save is in flight is skipped rather
than queued.

Change detection compares canonical JSON serialisations, so two structurally
equal values are considered unchanged even if they are different objects.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, Set, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SaveFunction = Callable[[Any], Awaitable[None]]


class AutoSavePhase(str, enum.Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    SAVING = "saving"


@dataclass
class AutoSaveOptions:
    interval_ms: float = 60_000
    save_delay_ms: float = 2_000
    min_changes: int = 1
    on_save_start: Optional[Callable[[], None]] = None
    on_save_success: Optional[Callable[[], None]] = None
    on_save_error: Optional[Callable[[BaseException], None]] = None
    should_save: Optional[Callable[[str, str], bool]] = None


@dataclass
class AutoSaveState(Generic[T]):
    is_saving: bool
    last_saved: Optional[datetime]
    saved_content: T
    save_count: int
    pending_change_count: int


def content_signature(content: Any) -> str:
    return json.dumps(content, sort_keys=True, ensure_ascii=False, default=str)


class AutoSaveScheduler(Generic[T]):
    def __init__(
        self,
        content: T,
        save_function: Callable[[T], Awaitable[None]],
        options: Optional[AutoSaveOptions] = None,
    ) -> None:
        self.options = options or AutoSaveOptions()
        self._save_function = save_function

        self._content: T = content
        self._signature = content_signature(content)
        self._saved_content: T = content
        self._saved_signature = self._signature

        self._is_saving = False
        self._last_saved: Optional[datetime] = None
        self._save_count = 0
        self._pending_changes = 0
        self._changes_during_save = 0

        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._interval_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ---------------- state ----------------
    @property
    def phase(self) -> AutoSavePhase:
        if self._is_saving:
            return AutoSavePhase.SAVING
        if self._debounce_handle is not None:
            return AutoSavePhase.PENDING_DEBOUNCE
        return AutoSavePhase.IDLE

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def last_saved(self) -> Optional[datetime]:
        return self._last_saved

    @property
    def saved_content(self) -> T:
        return self._saved_content

    @property
    def save_count(self) -> int:
        return self._save_count

    @property
    def pending_change_count(self) -> int:
        return self._pending_changes

    @property
    def has_unsaved_changes(self) -> bool:
        return self._signature != self._saved_signature

    def snapshot(self) -> AutoSaveState[T]:
        return AutoSaveState(
            is_saving=self._is_saving,
            last_saved=self._last_saved,
            saved_content=self._saved_content,
            save_count=self._save_count,
            pending_change_count=self._pending_changes,
        )

    # ---------------- lifecycle ----------------
    def start(self) -> None:
        """Start the interval timer. Must be called with a running event loop."""

        if self._interval_task is None or self._interval_task.done():
            self._interval_task = asyncio.get_running_loop().create_task(self._interval_loop())

    async def close(self) -> None:
        self._cancel_debounce()
        tasks = [task for task in (self._interval_task, *self._tasks) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._interval_task = None
        self._tasks.clear()

    async def __aenter__(self) -> "AutoSaveScheduler[T]":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ---------------- triggers ----------------
    def update(self, content: T) -> None:
        """Record a new value for the watched content."""

        self._content = content
        self._signature = content_signature(content)
        if self._signature == self._saved_signature:
            return

        self._pending_changes += 1
        if self._is_saving:
            self._changes_during_save += 1

        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(
            self.options.save_delay_ms / 1000.0, self._on_debounce_elapsed
        )

    async def force_save(self) -> bool:
        """Save right away. Returns ``False`` when skipped or vetoed."""

        return await self._save()

    def _on_debounce_elapsed(self) -> None:
        self._debounce_handle = None
        if self._pending_changes >= self.options.min_changes and not self._is_saving:
            self._spawn(self._save())

    async def _interval_loop(self) -> None:
        interval = self.options.interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            if not self._is_saving and self.has_unsaved_changes:
                await self._save()

    # ---------------- saving ----------------
    async def _save(self) -> bool:
        if self._is_saving:
            return False

        current = self._content
        signature = self._signature
        should_save = self.options.should_save
        if should_save is not None and not should_save(signature, self._saved_signature):
            return False

        self._is_saving = True
        self._changes_during_save = 0
        self._notify(self.options.on_save_start)
        try:
            await self._save_function(current)
        except Exception as exc:
            LOGGER.error("Auto-save failed: %s", exc)
            if self.options.on_save_error is not None:
                self.options.on_save_error(exc)
            return False
        else:
            self._saved_content = current
            self._saved_signature = signature
            self._last_saved = datetime.now(timezone.utc)
            self._save_count += 1
            # Edits that landed while the save was in flight are still unsaved.
            self._pending_changes = self._changes_during_save if self.has_unsaved_changes else 0
            self._notify(self.options.on_save_success)
            return True
        finally:
            self._is_saving = False
            self._changes_during_save = 0

    def _notify(self, callback: Optional[Callable[[], None]]) -> None:
        if callback is not None:
            callback()

    def _spawn(self, coro: Awaitable[bool]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None


def draft_store_saver(store: Any, story_id: str, title: Optional[str] = None) -> SaveFunction:
    """Build a save function that keeps a local copy of a story's content."""

    async def save(content: Any) -> None:
        store.save_story_content(story_id, content, title)

    return save


__all__ = [
    "AutoSaveOptions",
    "AutoSavePhase",
    "AutoSaveScheduler",
    "AutoSaveState",
    "content_signature",
    "draft_store_saver",
]
