import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Literal

from canvas_text_overlay.formats import SourceType
from canvas_text_overlay.models import CanvasSize, ParsedText
from canvas_text_overlay.signals import (
    Discovered,
    Received,
    ReceiveFailed,
    Requested,
    Signal,
)

logger = logging.getLogger(__name__)

EntryStatus = Literal["not_requested", "discovered", "fetching", "fetched", "failed"]
Listener = Callable[[Signal], None]


@dataclass(frozen=True)
class CanvasTextEntry:
    """Text state of one canvas.

    `parsed_text` is set only when fetched and `error` only when failed.
    """

    target_id: str
    status: EntryStatus
    source_uri: str
    source_type: SourceType
    generation: int
    canvas_size: CanvasSize | None = None
    parsed_text: ParsedText | None = None
    error: str | None = None

    @property
    def is_fetching(self) -> bool:
        return self.status == "fetching"


class TextStore:
    """Per-canvas text cache with an explicit lifecycle.

    discovered -> fetching -> fetched | failed. Each canvas id maps to one
    entry; re-discovery after `reset` replaces it under a higher generation so
    results of superseded fetches are discarded.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CanvasTextEntry] = {}
        self._generations: dict[str, int] = {}
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def get(self, target_id: str) -> CanvasTextEntry | None:
        with self._lock:
            return self._entries.get(target_id)

    def entries(self) -> dict[str, CanvasTextEntry]:
        with self._lock:
            return dict(self._entries)

    def status(self, target_id: str) -> EntryStatus:
        entry = self.get(target_id)
        return entry.status if entry is not None else "not_requested"

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for applied signals; returns an unsubscribe."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, signal: Signal) -> Signal | None:
        """Apply a signal if the transition is legal.

        Returns:
            The applied signal (with its generation filled in) or None when
            the signal was ignored, e.g. a stale result or a repeated discovery.
        """
        with self._lock:
            applied = self._apply(signal)
            listeners = list(self._listeners) if applied is not None else []
        if applied is None:
            logger.debug("Ignored %s for %s", type(signal).__name__, signal.target_id)
            return None
        for listener in listeners:
            listener(applied)
        return applied

    def reset(self, target_id: str) -> None:
        """Drop an entry so the next discovery fetches it again."""
        with self._lock:
            self._entries.pop(target_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def texts_for_canvases(self, canvas_ids: Iterable[str]) -> list[CanvasTextEntry]:
        """Entries for the given canvases, in order, skipping unknown ids."""
        with self._lock:
            return [
                self._entries[canvas_id]
                for canvas_id in canvas_ids
                if canvas_id in self._entries
            ]

    def page_texts(self, canvas_ids: Iterable[str]) -> list[dict[str, object]]:
        """Renderer payload for the fetched texts of the given canvases."""
        pages: list[dict[str, object]] = []
        for entry in self.texts_for_canvases(canvas_ids):
            if entry.status != "fetched" or entry.parsed_text is None:
                continue
            page = entry.parsed_text.model_dump()
            page["source"] = entry.source_uri
            page["source_type"] = entry.source_type
            pages.append(page)
        return pages

    def _next_generation(self, target_id: str) -> int:
        generation = self._generations.get(target_id, 0) + 1
        self._generations[target_id] = generation
        return generation

    def _apply(self, signal: Signal) -> Signal | None:
        current = self._entries.get(signal.target_id)
        if isinstance(signal, Discovered):
            if current is not None:
                return None
            generation = self._next_generation(signal.target_id)
            self._entries[signal.target_id] = CanvasTextEntry(
                target_id=signal.target_id,
                status="discovered",
                source_uri=signal.source_uri,
                source_type=signal.source_type,
                generation=generation,
            )
            return replace(signal, generation=generation)
        if isinstance(signal, Requested):
            if current is None or current.status != "discovered":
                return None
            if signal.generation not in (None, current.generation):
                return None
            self._entries[signal.target_id] = replace(
                current,
                status="fetching",
                source_uri=signal.source_uri,
                canvas_size=signal.canvas_size,
            )
            return replace(signal, generation=current.generation)
        if signal.generation is None:
            generation = self._next_generation(signal.target_id)
        elif (
            current is None
            or current.generation != signal.generation
            or not current.is_fetching
        ):
            return None
        else:
            generation = current.generation
        if isinstance(signal, Received):
            self._entries[signal.target_id] = CanvasTextEntry(
                target_id=signal.target_id,
                status="fetched",
                source_uri=signal.source_uri,
                source_type=signal.source_type,
                generation=generation,
                canvas_size=current.canvas_size if current else None,
                parsed_text=signal.parsed_text,
            )
        elif isinstance(signal, ReceiveFailed):
            self._entries[signal.target_id] = CanvasTextEntry(
                target_id=signal.target_id,
                status="failed",
                source_uri=signal.source_uri,
                source_type=signal.source_type
                or (current.source_type if current else "ocr"),
                generation=generation,
                canvas_size=current.canvas_size if current else None,
                error=signal.error,
            )
        else:
            return None
        return replace(signal, generation=generation)
