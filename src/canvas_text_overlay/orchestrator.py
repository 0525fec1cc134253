import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass

from canvas_text_overlay.annotations import annotation_items, is_text_annotation
from canvas_text_overlay.config import TextOverlayConfig, resolve_overlay_config
from canvas_text_overlay.errors import MalformedSource, TextOverlayError
from canvas_text_overlay.fetch import Fetcher, _get_default_fetcher
from canvas_text_overlay.formats import SourceType, parse_iiif_annotations, parse_text
from canvas_text_overlay.models import CanvasSize
from canvas_text_overlay.resolver import resolve_resources
from canvas_text_overlay.signals import (
    Discovered,
    Received,
    ReceiveFailed,
    Requested,
    Signal,
)
from canvas_text_overlay.store import CanvasTextEntry, TextStore
from canvas_text_overlay.viewer import CanvasInfo, ViewerState

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class DiscoverRequest:
    visible_canvas_ids: tuple[str, ...]
    window_id: str


@dataclass(frozen=True)
class ConfigChanged:
    window_id: str
    payload: Mapping[str, object]


Event = DiscoverRequest | ConfigChanged


class TextOverlayOrchestrator:
    """Discover text sources for visible canvases and load them into the store.

    Each fetch runs as its own task on `executor` and ends in exactly one
    terminal write (`Received` or `ReceiveFailed`) tagged with the generation
    of the request that started it, so results of superseded requests are
    dropped by the store.
    """

    def __init__(
        self,
        store: TextStore,
        viewer: ViewerState,
        fetcher: Fetcher | None = None,
        *,
        executor: Executor | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._store = store
        self._viewer = viewer
        self._fetcher = fetcher or _get_default_fetcher()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="text-overlay",
        )

    def __enter__(self) -> "TextOverlayOrchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def handle(self, event: Event) -> list[Future]:
        """Route an inbound host event."""
        if isinstance(event, DiscoverRequest):
            return self.discover(event.visible_canvas_ids, event.window_id)
        if isinstance(event, ConfigChanged):
            return self.on_config_change(event.window_id, event.payload)
        raise TypeError(f"Unsupported event {event!r}")

    def discover(
        self,
        visible_canvas_ids: Sequence[str],
        window_id: str,
        *,
        config: TextOverlayConfig | None = None,
    ) -> list[Future]:
        """Discover text sources for visible canvases without a cache entry.

        Args:
            visible_canvas_ids: Canvases currently shown in the window.
            window_id: Window whose overlay options apply.
            config: Options to use instead of the window's stored options.
        Returns:
            Futures of the fetches that were issued, one per requested canvas.
        """
        resolved = config or resolve_overlay_config(
            self._viewer.window_config(window_id)
        )
        if not resolved.enabled:
            logger.debug("Text overlay disabled for window %s", window_id)
            return []
        canvases = {canvas.id: canvas for canvas in self._viewer.canvases(window_id)}
        futures: list[Future] = []
        for canvas_id in visible_canvas_ids:
            if self._store.get(canvas_id) is not None:
                continue
            canvas = canvases.get(canvas_id)
            if canvas is None or canvas.text_association is None:
                continue
            association = canvas.text_association
            source_type = association.source_type
            if source_type is None:
                logger.debug(
                    "Canvas %s links %s with unrecognized media type %r",
                    canvas_id,
                    association.uri,
                    association.media_type,
                )
                continue
            discovered = self._store.dispatch(
                Discovered(canvas_id, association.uri, source_type)
            )
            if discovered is None or not resolved.fetch_wanted:
                continue
            future = self._request(canvas, discovered.generation)
            if future is not None:
                futures.append(future)
        return futures

    def on_config_change(
        self,
        window_id: str,
        new_config: Mapping[str, object] | TextOverlayConfig,
    ) -> list[Future]:
        """Re-run discovery when an overlay change needs texts that are missing.

        Annotation-sourced and failed entries of visible canvases are reset
        first so they are fetched again; discovered but never requested
        entries are requested. Entries of canvases without a text association
        (e.g. annotations pushed by the host) are kept, since discovery could
        not recreate them.
        """
        if isinstance(new_config, TextOverlayConfig):
            config = new_config
        else:
            config = resolve_overlay_config(new_config)
        if not config.fetch_wanted:
            return []
        visible = list(self._viewer.visible_canvas_ids(window_id))
        entries = self._store.texts_for_canvases(visible)
        missing = len(entries) < len(visible)
        refetchable = {
            canvas.id
            for canvas in self._viewer.canvases(window_id)
            if canvas.text_association is not None
            and canvas.text_association.source_type is not None
        }
        stale = [
            entry
            for entry in entries
            if entry.target_id in refetchable
            and (entry.source_type == "annos" or entry.status == "failed")
        ]
        pending = [entry for entry in entries if entry.status == "discovered"]
        if not (missing or stale or pending):
            return []
        for entry in stale:
            self._store.reset(entry.target_id)
        futures = self.discover(visible, window_id, config=config)
        futures.extend(self._request_pending(window_id, pending))
        return futures

    def fetch_and_parse(
        self,
        target_id: str,
        source_uri: str,
        canvas_size: CanvasSize,
        *,
        media_type: str | None = None,
        generation: int | None = None,
    ) -> Signal | None:
        """Fetch OCR markup and record the parsed text or the failure."""
        try:
            raw = self._fetcher.fetch_text(source_uri)
            parsed = parse_text(raw, canvas_size, media_type=media_type)
        except TextOverlayError as exc:
            return self._fail(target_id, source_uri, exc, generation, "ocr")
        return self._store.dispatch(
            Received(target_id, source_uri, "ocr", parsed, generation)
        )

    def fetch_annotations(
        self,
        target_id: str,
        annotation_uri: str,
        canvas_size: CanvasSize,
        *,
        generation: int | None = None,
    ) -> Signal | None:
        """Fetch an annotation list, inline external resources, and parse it."""
        try:
            annotation_json = self._fetcher.fetch_json(annotation_uri)
            if not isinstance(annotation_json, Mapping):
                raise MalformedSource("Annotation list must be a JSON object")
            resolved = resolve_resources(annotation_json, self._fetcher)
        except TextOverlayError as exc:
            return self._fail(target_id, annotation_uri, exc, generation, "annos")
        return self.process_annotation_source(
            target_id,
            annotation_uri,
            resolved,
            canvas_size,
            generation=generation,
        )

    def process_annotation_source(
        self,
        target_id: str,
        annotation_id: str,
        annotation_json: Mapping[str, object],
        canvas_size: CanvasSize,
        *,
        generation: int | None = None,
    ) -> Signal | None:
        """Parse the text-bearing annotations of a resolved annotation list.

        Painting annotations are excluded. A list pushed by the host
        (`generation=None`) without any text annotations leaves the store
        untouched.
        """
        texts = [
            annotation
            for annotation in annotation_items(annotation_json)
            if is_text_annotation(annotation)
        ]
        if not texts and generation is None:
            return None
        try:
            parsed = parse_iiif_annotations(texts, canvas_size)
        except MalformedSource as exc:
            return self._fail(target_id, annotation_id, exc, generation, "annos")
        return self._store.dispatch(
            Received(target_id, annotation_id, "annos", parsed, generation)
        )

    def _request(self, canvas: CanvasInfo, generation: int | None) -> Future | None:
        association = canvas.text_association
        if association is None:
            return None
        requested = self._store.dispatch(
            Requested(canvas.id, association.uri, canvas.canvas_size, generation)
        )
        if requested is None:
            return None
        if association.source_type == "annos":
            return self._submit(
                canvas.id,
                association.uri,
                requested.generation,
                "annos",
                lambda: self.fetch_annotations(
                    canvas.id,
                    association.uri,
                    canvas.canvas_size,
                    generation=requested.generation,
                ),
            )
        return self._submit(
            canvas.id,
            association.uri,
            requested.generation,
            "ocr",
            lambda: self.fetch_and_parse(
                canvas.id,
                association.uri,
                canvas.canvas_size,
                media_type=association.media_type,
                generation=requested.generation,
            ),
        )

    def _request_pending(
        self,
        window_id: str,
        pending: Sequence[CanvasTextEntry],
    ) -> list[Future]:
        if not pending:
            return []
        canvases = {canvas.id: canvas for canvas in self._viewer.canvases(window_id)}
        futures: list[Future] = []
        for entry in pending:
            canvas = canvases.get(entry.target_id)
            if canvas is None:
                continue
            future = self._request(canvas, entry.generation)
            if future is not None:
                futures.append(future)
        return futures

    def _submit(
        self,
        target_id: str,
        source_uri: str,
        generation: int | None,
        source_type: SourceType,
        task: Callable[[], Signal | None],
    ) -> Future:
        def _run() -> Signal | None:
            try:
                return task()
            except Exception as exc:
                return self._fail(target_id, source_uri, exc, generation, source_type)

        return self._executor.submit(_run)

    def _fail(
        self,
        target_id: str,
        source_uri: str,
        exc: Exception,
        generation: int | None,
        source_type: SourceType,
    ) -> Signal | None:
        logger.warning(
            "Loading text for %s from %s failed: %s", target_id, source_uri, exc
        )
        return self._store.dispatch(
            ReceiveFailed(
                target_id,
                source_uri,
                str(exc),
                generation,
                source_type=source_type,
            )
        )
