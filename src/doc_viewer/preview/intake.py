import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Callable, Sequence

from .. import config
from .errors import ValidationError
from .interfaces import FileCandidate, ImagePreviewGateway, ValidationVerdict

log = logging.getLogger(__name__)


@dataclass
class IntakeConfig:
    accept: tuple[str, ...] = field(default_factory=lambda: tuple(config.ALLOWED_TYPES))
    max_size_mb: float = config.MAX_UPLOAD_MB
    disabled: bool = False

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


@dataclass
class IntakeDisplayState:
    """Display state owned by the caller; the gate only reads and clears it."""

    selected_file: FileCandidate | None = None
    file_preview: str | None = None
    existing_file: str | None = None
    file_loading: bool = False
    is_drag_over: bool = False


@dataclass
class IntakeCallbacks:
    on_file_select: Callable[[FileCandidate], None] | None = None
    on_file_delete: Callable[[], None] | None = None
    on_upload_click: Callable[[], None] | None = None
    on_drag_over: Callable[[], None] | None = None
    on_drag_leave: Callable[[], None] | None = None
    on_drop: Callable[[], None] | None = None


_TYPE_LABELS = "JPG, PNG, GIF, PDF, DOC, DOCX"


def resolve_type(candidate: FileCandidate) -> str:
    hint = (candidate.mime_hint or "").strip().lower()
    if hint and hint != "application/octet-stream":
        return hint
    guessed, _ = mimetypes.guess_type(candidate.name or "")
    return (guessed or hint).lower()


class IntakeGate:
    """Validates candidate files and hands accepted ones to the caller.

    One gate is reused across unrelated record types, so it persists nothing:
    storage happens in the caller's `on_file_select` callback and all display
    state lives in the caller-owned `IntakeDisplayState`.
    """

    def __init__(
        self,
        state: IntakeDisplayState | None = None,
        callbacks: IntakeCallbacks | None = None,
        settings: IntakeConfig | None = None,
        *,
        previewer: ImagePreviewGateway | None = None,
    ) -> None:
        self.state = state or IntakeDisplayState()
        self.callbacks = callbacks or IntakeCallbacks()
        self.settings = settings or IntakeConfig()
        self._previewer = previewer
        # bumped on every select/delete; previews for older values are dropped
        self._generation = 0
        self._preview_tasks: set[asyncio.Task] = set()

    @property
    def has_file(self) -> bool:
        s = self.state
        return bool(s.file_preview or s.existing_file or s.selected_file)

    def validate(self, candidate: FileCandidate) -> ValidationVerdict:
        file_type = resolve_type(candidate)
        allowed = {t.lower() for t in self.settings.accept}
        if file_type not in allowed:
            return ValidationVerdict(
                is_valid=False,
                reason="unsupported type",
                message=f"Please select a valid file type ({_TYPE_LABELS})",
            )
        if candidate.size_bytes > self.settings.max_size_bytes:
            return ValidationVerdict(
                is_valid=False,
                reason="too large",
                message=f"File size must be less than {self.settings.max_size_mb:g}MB",
            )
        return ValidationVerdict(is_valid=True)

    def require_valid(self, candidate: FileCandidate) -> None:
        """Like validate, but raise ValidationError on rejection."""
        verdict = self.validate(candidate)
        if not verdict.is_valid:
            raise ValidationError(verdict.reason or "invalid", verdict.message)

    async def select(self, candidate: FileCandidate) -> bool:
        verdict = self.validate(candidate)
        if not verdict.is_valid:
            log.debug("Rejected %s: %s", candidate.name, verdict.reason)
            return False

        self._generation += 1
        log.debug("Accepted %s (%d bytes)", candidate.name, candidate.size_bytes)
        self._fire(self.callbacks.on_file_select, candidate)

        file_type = resolve_type(candidate)
        if file_type.startswith("image/") and self._previewer is not None:
            task = asyncio.create_task(self._build_preview(candidate, file_type, self._generation))
            self._preview_tasks.add(task)
            task.add_done_callback(self._preview_tasks.discard)
        return True

    async def pick(self, files: Sequence[FileCandidate]) -> None:
        """Manual file-picker selection."""
        if self.settings.disabled or not files:
            return
        await self.select(files[0])

    def delete(self) -> None:
        self._generation += 1
        self.state.selected_file = None
        self.state.file_preview = None
        self.state.existing_file = None
        self._fire(self.callbacks.on_file_delete)

    def upload_click(self) -> None:
        if not self.settings.disabled:
            self._fire(self.callbacks.on_upload_click)

    def drag_over(self) -> None:
        if self.settings.disabled:
            return
        self.state.is_drag_over = True
        self._fire(self.callbacks.on_drag_over)

    def drag_leave(self) -> None:
        if self.settings.disabled:
            return
        self.state.is_drag_over = False
        self._fire(self.callbacks.on_drag_leave)

    async def drop(self, files: Sequence[FileCandidate]) -> None:
        if self.settings.disabled:
            return
        try:
            if files:
                if len(files) > 1:
                    log.debug("Ignoring %d extra dropped files", len(files) - 1)
                await self.select(files[0])
        finally:
            self.state.is_drag_over = False
            self._fire(self.callbacks.on_drop)

    async def drain_previews(self) -> None:
        if self._preview_tasks:
            await asyncio.gather(*list(self._preview_tasks), return_exceptions=True)

    async def _build_preview(self, candidate: FileCandidate, file_type: str, generation: int) -> None:
        if self._previewer is None:
            return
        try:
            url = await asyncio.to_thread(self._previewer.make_preview, candidate.data, file_type)
        except Exception as e:
            log.warning("Image preview failed for %s: %s", candidate.name, e)
            return
        if generation != self._generation:
            log.debug("Discarding stale preview for %s", candidate.name)
            return
        self.state.file_preview = url

    @staticmethod
    def _fire(callback: Callable | None, *args: object) -> None:
        if callback is not None:
            callback(*args)
