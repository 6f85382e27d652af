"""Character-sheet upload dialog, independent of any UI toolkit.

A front end renders ``UploadDialog`` state (phase, error, progress, prompt) and
forwards user actions to it. The actual transfer is an injected coroutine
``upload(file, level)``; the dialog only validates, gates overwrites behind an
explicit confirmation and animates a simulated progress value while the
transfer is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

ALLOWED_MIME = {"application/pdf", "image/png", "image/jpeg"}
MAX_FILE_BYTES = 10 * 1024 * 1024
LEVELS = tuple(range(1, 21))

PROGRESS_CAP = 90.0
PROGRESS_STEP_MAX = 30.0
TICK_SECONDS = 0.2

ERR_FILE_TYPE = "Only PDF and image files are supported"
ERR_FILE_SIZE = "File size must be less than 10MB"
ERR_NO_FILE = "Please select a file"
ERR_UPLOAD_FAILED = "Failed to upload file"


class DialogPhase(str, Enum):
    CLOSED = "closed"
    EDITING = "editing"
    CONFIRMING = "confirming"
    UPLOADING = "uploading"


class UploadError(Exception):
    """Raised by upload collaborators; the message is shown to the user as-is."""


@dataclass(frozen=True)
class SelectedFile:
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class PendingOverwrite:
    file: SelectedFile
    level: int


UploadFn = Callable[[SelectedFile, int], Awaitable[object]]


def validate_file(file: SelectedFile) -> Optional[str]:
    if (file.content_type or "").lower() not in ALLOWED_MIME:
        return ERR_FILE_TYPE
    if file.size > MAX_FILE_BYTES:
        return ERR_FILE_SIZE
    return None


class UploadDialog:
    def __init__(
        self,
        upload: UploadFn,
        *,
        on_change: Callable[["UploadDialog"], None] | None = None,
        tick_seconds: float = TICK_SECONDS,
        rng: random.Random | None = None,
    ):
        self._upload = upload
        self._on_change = on_change
        self._tick_seconds = tick_seconds
        self._rng = rng or random.Random()
        self._ticker: asyncio.Task | None = None
        self._upload_task: asyncio.Task | None = None
        self._reset(DialogPhase.CLOSED, default_level=1, existing_levels=())

    def _reset(self, phase: DialogPhase, default_level: int, existing_levels: Iterable[int]) -> None:
        self.phase = phase
        self.file: SelectedFile | None = None
        self.default_level = default_level
        self.level = default_level
        self.existing_levels = frozenset(int(lvl) for lvl in existing_levels)
        self.error = ""
        self.progress = 0.0
        self.pending: PendingOverwrite | None = None

    def _changed(self) -> None:
        if self._on_change:
            self._on_change(self)

    @property
    def is_open(self) -> bool:
        return self.phase is not DialogPhase.CLOSED

    @property
    def can_submit(self) -> bool:
        return self.phase is DialogPhase.EDITING and self.file is not None

    @property
    def prompt(self) -> str | None:
        if self.pending is None:
            return None
        return f"Overwrite Level {self.pending.level}?"

    def open(self, default_level: int = 1, existing_levels: Iterable[int] = ()) -> None:
        self._cancel_tasks()
        self._reset(DialogPhase.EDITING, default_level, existing_levels)
        self._changed()

    def close(self) -> None:
        self._cancel_tasks()
        self._reset(DialogPhase.CLOSED, default_level=self.default_level, existing_levels=())
        self._changed()

    def select_file(self, file: SelectedFile) -> bool:
        error = validate_file(file)
        if error:
            self.file = None
            self.error = error
            self._changed()
            return False
        self.file = file
        self.error = ""
        self._changed()
        return True

    def set_level(self, level: int | str) -> None:
        value = int(level)
        if value not in LEVELS:
            raise ValueError(f"Level must be one of 1..20, got {value}")
        self.level = value
        self._changed()

    async def submit(self) -> bool:
        """Start the upload, or park it behind an overwrite prompt. True on a finished upload."""
        if self.phase is not DialogPhase.EDITING:
            return False
        if self.file is None:
            self.error = ERR_NO_FILE
            self._changed()
            return False
        if self.level in self.existing_levels:
            self.pending = PendingOverwrite(self.file, self.level)
            self.phase = DialogPhase.CONFIRMING
            self._changed()
            return False
        return await self._perform(self.file, self.level)

    async def confirm_overwrite(self) -> bool:
        if self.phase is not DialogPhase.CONFIRMING or self.pending is None:
            return False
        pending = self.pending
        self.pending = None
        return await self._perform(pending.file, pending.level)

    def cancel_overwrite(self) -> None:
        if self.phase is not DialogPhase.CONFIRMING:
            return
        self.pending = None
        self.phase = DialogPhase.EDITING
        self._changed()

    async def _tick(self) -> None:
        while self.progress < PROGRESS_CAP:
            await asyncio.sleep(self._tick_seconds)
            step = self._rng.uniform(1.0, PROGRESS_STEP_MAX)
            self.progress = min(self.progress + step, PROGRESS_CAP)
            self._changed()

    async def _perform(self, file: SelectedFile, level: int) -> bool:
        self.phase = DialogPhase.UPLOADING
        self.error = ""
        self.progress = 0.0
        self._changed()

        self._ticker = asyncio.create_task(self._tick())
        self._upload_task = asyncio.ensure_future(self._upload(file, level))
        try:
            await self._upload_task
        except asyncio.CancelledError:
            self._stop_ticker()
            # close() while uploading; state was already reset there
            if self.phase is DialogPhase.CLOSED:
                return False
            self.progress = 0.0
            self.phase = DialogPhase.EDITING
            self._changed()
            raise
        except Exception as exc:
            logger.debug("Upload of %s to level %s failed", file.name, level, exc_info=True)
            self._stop_ticker()
            self.error = str(exc) or ERR_UPLOAD_FAILED
            self.progress = 0.0
            self.phase = DialogPhase.EDITING
            self._changed()
            return False
        finally:
            self._upload_task = None

        self._stop_ticker()
        self.progress = 100.0
        self.phase = DialogPhase.EDITING
        self.existing_levels = self.existing_levels | {level}
        self._changed()
        return True

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _cancel_tasks(self) -> None:
        self._stop_ticker()
        if self._upload_task is not None and not self._upload_task.done():
            self._upload_task.cancel()
