import contextlib
import logging
from typing import AsyncIterator, Callable

from .interfaces import StoredDocumentRef
from .service import PreviewEngine

log = logging.getLogger(__name__)


class KeyBindings:
    """Key handlers shared by everything the host currently displays."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[[], None]]] = {}

    def bind(self, key: str, handler: Callable[[], None]) -> None:
        self._handlers.setdefault(key, []).append(handler)

    def unbind(self, key: str, handler: Callable[[], None]) -> None:
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(key, None)

    def dispatch(self, key: str) -> bool:
        handlers = list(self._handlers.get(key, []))
        for h in handlers:
            h()
        return bool(handlers)

    def bound(self, key: str) -> int:
        return len(self._handlers.get(key, []))


class PreviewSurface:
    """A closable viewer panel around a PreviewEngine.

    The surface never closes itself: Escape only asks the owner to close via
    `on_close`. Closing leaves the engine's session untouched; showing a
    document again always starts a fresh session.
    """

    def __init__(
        self,
        engine: PreviewEngine,
        on_close: Callable[[], None],
        *,
        bindings: KeyBindings | None = None,
    ) -> None:
        self.engine = engine
        self.on_close = on_close
        self.bindings = bindings or KeyBindings()
        self.is_open = False

    def handle_key(self, key: str) -> None:
        if key == "Escape" and self.is_open:
            self.on_close()

    def _on_escape(self) -> None:
        self.handle_key("Escape")

    @contextlib.asynccontextmanager
    async def show(self, ref: StoredDocumentRef | None) -> AsyncIterator[PreviewEngine]:
        self.bindings.bind("Escape", self._on_escape)
        self.is_open = True
        try:
            await self.engine.set_reference(ref)
            yield self.engine
        finally:
            self.is_open = False
            self.bindings.unbind("Escape", self._on_escape)
            log.debug("Viewer closed")
