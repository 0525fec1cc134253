import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor

import pytest
from conftest import ImmediateExecutor, RecordingFetcher, read_fixture

from canvas_text_overlay import orchestrator as orchestrator_module
from canvas_text_overlay.config import TextOverlayConfig
from canvas_text_overlay.errors import MalformedSource
from canvas_text_overlay.models import CanvasSize, ParsedText
from canvas_text_overlay.orchestrator import (
    ConfigChanged,
    DiscoverRequest,
    TextOverlayOrchestrator,
)
from canvas_text_overlay.signals import (
    Discovered,
    Received,
    ReceiveFailed,
    Requested,
    Signal,
)
from canvas_text_overlay.store import TextStore
from canvas_text_overlay.viewer import (
    ANNOTATION_LIST_MEDIA_TYPE,
    CanvasInfo,
    StaticViewerState,
    TextAssociation,
)

WINDOW = "window-1"
ALTO_URI = "https://example.org/alto/{}.xml"
LIST_URI = "https://example.org/list/{}"
FULL_TEXT_URI = "https://example.org/full.txt"

SELECTABLE = {"textOverlay": {"enabled": True, "selectable": True}}
HIDDEN = {"textOverlay": {"enabled": True, "selectable": False, "visible": False}}


def _ocr_canvas(index: int) -> CanvasInfo:
    return CanvasInfo(
        id=f"canvas-{index}",
        width=2000,
        height=3000,
        text_association=TextAssociation(
            uri=ALTO_URI.format(index), media_type="application/xml+alto"
        ),
    )


def _annos_canvas(index: int) -> CanvasInfo:
    return CanvasInfo(
        id=f"canvas-{index}",
        width=1000,
        height=1000,
        text_association=TextAssociation(
            uri=LIST_URI.format(index), media_type=ANNOTATION_LIST_MEDIA_TYPE
        ),
    )


def _annotation(resource: dict, **extra: object) -> dict:
    return {
        "@type": "oa:Annotation",
        "motivation": "supplementing",
        "resource": resource,
        "on": "canvas#xywh=0,0,100,10",
        **extra,
    }


def _viewer(
    canvases: list[CanvasInfo],
    config: dict | None = None,
) -> StaticViewerState:
    return StaticViewerState(
        configs={WINDOW: config if config is not None else SELECTABLE},
        canvases_by_window={WINDOW: canvases},
        visible={WINDOW: [canvas.id for canvas in canvases]},
    )


def _recorded(store: TextStore) -> list[Signal]:
    seen: list[Signal] = []
    store.subscribe(seen.append)
    return seen


def _orchestrator(
    store: TextStore,
    viewer: StaticViewerState,
    fetcher: RecordingFetcher,
    executor: Executor | None = None,
) -> TextOverlayOrchestrator:
    return TextOverlayOrchestrator(
        store, viewer, fetcher, executor=executor or ImmediateExecutor()
    )


class DeferredExecutor(Executor):
    """Queue tasks until `run_all` so tests control completion order."""

    def __init__(self) -> None:
        self.pending: list[tuple[Future, object]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, lambda: fn(*args, **kwargs)))
        return future

    def run_all(self) -> None:
        pending, self.pending = self.pending, []
        for future, task in pending:
            future.set_result(task())


def test_discovery_fetches_and_parses_ocr() -> None:
    store = TextStore()
    signals = _recorded(store)
    fetcher = RecordingFetcher({ALTO_URI.format(1): read_fixture("alto_mm10.xml")})
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)]), fetcher)

    futures = orchestrator.discover(["canvas-1"], WINDOW)

    assert len(futures) == 1
    entry = store.get("canvas-1")
    assert entry.status == "fetched"
    assert entry.source_type == "ocr"
    assert entry.parsed_text.text == "a firstWord\nhyphen-"
    assert [type(signal) for signal in signals] == [Discovered, Requested, Received]
    requested = signals[1]
    assert requested.canvas_size == CanvasSize(width=2000, height=3000)


def test_rediscovery_emits_nothing_for_cached_canvases() -> None:
    store = TextStore()
    fetcher = RecordingFetcher({ALTO_URI.format(1): read_fixture("alto_mm10.xml")})
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)]), fetcher)
    orchestrator.discover(["canvas-1"], WINDOW)
    signals = _recorded(store)

    assert orchestrator.discover(["canvas-1"], WINDOW) == []
    assert signals == []
    assert fetcher.calls == [ALTO_URI.format(1)]


def test_exactly_one_request_per_missing_canvas() -> None:
    store = TextStore()
    signals = _recorded(store)
    canvases = [_ocr_canvas(1), _ocr_canvas(2)]
    executor = DeferredExecutor()
    orchestrator = _orchestrator(store, _viewer(canvases), RecordingFetcher(), executor)

    orchestrator.discover(["canvas-1", "canvas-2", "canvas-1"], WINDOW)
    orchestrator.discover(["canvas-2"], WINDOW)

    requested = [signal for signal in signals if isinstance(signal, Requested)]
    assert [signal.target_id for signal in requested] == ["canvas-1", "canvas-2"]
    assert len(executor.pending) == 2
    assert store.status("canvas-1") == "fetching"


@pytest.mark.parametrize(
    "config",
    [{}, {"textOverlay": {"enabled": False, "selectable": True, "visible": True}}],
)
def test_disabled_overlay_emits_no_signals(config: dict) -> None:
    store = TextStore()
    signals = _recorded(store)
    fetcher = RecordingFetcher()
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)], config), fetcher)

    assert orchestrator.discover(["canvas-1"], WINDOW) == []
    assert signals == []
    assert fetcher.calls == []


def test_hidden_overlay_discovers_without_fetching() -> None:
    store = TextStore()
    fetcher = RecordingFetcher()
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)], HIDDEN), fetcher)

    orchestrator.discover(["canvas-1"], WINDOW)

    assert store.status("canvas-1") == "discovered"
    assert fetcher.calls == []


def test_canvases_without_usable_sources_are_skipped() -> None:
    store = TextStore()
    canvases = [
        CanvasInfo(id="plain", width=10, height=10),
        CanvasInfo(
            id="pdf",
            width=10,
            height=10,
            text_association=TextAssociation(
                uri="https://example.org/1.pdf", media_type="application/pdf"
            ),
        ),
    ]
    orchestrator = _orchestrator(store, _viewer(canvases), RecordingFetcher())

    orchestrator.discover(["plain", "pdf", "not-in-window"], WINDOW)

    assert store.entries() == {}


def test_fetch_failure_yields_one_failed_signal() -> None:
    store = TextStore()
    signals = _recorded(store)
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)]), RecordingFetcher())

    orchestrator.discover(["canvas-1"], WINDOW)

    entry = store.get("canvas-1")
    assert entry.status == "failed"
    assert "404" in entry.error
    assert entry.parsed_text is None
    assert not any(isinstance(signal, Received) for signal in signals)
    assert isinstance(signals[-1], ReceiveFailed)


def test_malformed_markup_fails_only_that_canvas() -> None:
    store = TextStore()
    fetcher = RecordingFetcher(
        {
            ALTO_URI.format(1): "<alto><Layout>",
            ALTO_URI.format(2): read_fixture("alto_mm10.xml"),
        }
    )
    orchestrator = _orchestrator(
        store, _viewer([_ocr_canvas(1), _ocr_canvas(2)]), fetcher
    )

    orchestrator.discover(["canvas-1", "canvas-2"], WINDOW)

    assert store.status("canvas-1") == "failed"
    assert store.status("canvas-2") == "fetched"


def test_unexpected_errors_are_recorded_as_failures() -> None:
    store = TextStore()
    fetcher = RecordingFetcher({ALTO_URI.format(1): RuntimeError("socket exploded")})
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)]), fetcher)

    futures = orchestrator.discover(["canvas-1"], WINDOW)

    assert futures[0].exception() is None
    assert store.get("canvas-1").error == "socket exploded"


def test_annotation_lists_resolve_external_text() -> None:
    store = TextStore()
    annotation_list = {
        "@type": "sc:AnnotationList",
        "resources": [
            _annotation({"@id": f"{FULL_TEXT_URI}#char=5,12"}, dcType="Line"),
            _annotation(
                {"@type": "dctypes:Image", "@id": "https://example.org/img.jpg"},
                motivation="sc:painting",
            ),
        ],
    }
    fetcher = RecordingFetcher(
        {
            LIST_URI.format(1): annotation_list,
            FULL_TEXT_URI: "Some content that is supposed to be longer",
        }
    )
    orchestrator = _orchestrator(store, _viewer([_annos_canvas(1)]), fetcher)

    orchestrator.discover(["canvas-1"], WINDOW)

    entry = store.get("canvas-1")
    assert entry.status == "fetched"
    assert entry.source_type == "annos"
    assert entry.parsed_text.text == "content that"
    assert "https://example.org/img.jpg" not in fetcher.calls


def test_non_object_annotation_list_fails() -> None:
    store = TextStore()
    fetcher = RecordingFetcher({LIST_URI.format(1): ["not", "a", "list object"]})
    orchestrator = _orchestrator(store, _viewer([_annos_canvas(1)]), fetcher)

    orchestrator.discover(["canvas-1"], WINDOW)

    assert store.get("canvas-1").error == "Annotation list must be a JSON object"


def test_only_text_annotations_reach_the_parser(
    monkeypatch: pytest.MonkeyPatch,
    canvas_size: CanvasSize,
) -> None:
    received: list[list[dict]] = []

    def _fake_parse(annotations: list[dict], canvas: CanvasSize) -> ParsedText:
        received.append(list(annotations))
        return ParsedText(width=canvas.width, height=canvas.height)

    monkeypatch.setattr(orchestrator_module, "parse_iiif_annotations", _fake_parse)
    painting = {
        "motivation": "sc:painting",
        "resource": {"@type": "cnt:ContentAsText", "chars": "image"},
    }
    supplementing = {"motivation": "supplementing", "resource": {"@id": "x"}}
    content = {"resource": {"@type": "cnt:ContentAsText", "chars": "text"}}
    line = {"dcType": "Line", "resource": {"chars": "line"}}
    word = {"dcType": "Word", "resource": {"chars": "word"}}
    store = TextStore()
    orchestrator = _orchestrator(store, _viewer([]), RecordingFetcher())

    orchestrator.process_annotation_source(
        "canvas-1",
        "https://example.org/list/1",
        {"resources": [painting, supplementing, content, line, word]},
        canvas_size,
    )

    assert received == [[supplementing, content, line, word]]
    assert store.get("canvas-1").source_type == "annos"


def test_pushed_source_without_text_is_ignored(canvas_size: CanvasSize) -> None:
    store = TextStore()
    orchestrator = _orchestrator(store, _viewer([]), RecordingFetcher())

    result = orchestrator.process_annotation_source(
        "canvas-1",
        "https://example.org/list/1",
        {"resources": [{"motivation": "painting", "resource": {"@id": "img"}}]},
        canvas_size,
    )

    assert result is None
    assert store.entries() == {}


def test_parser_errors_in_annotation_sources_fail_the_canvas(
    monkeypatch: pytest.MonkeyPatch,
    canvas_size: CanvasSize,
) -> None:
    def _broken(annotations: list[dict], canvas: CanvasSize) -> ParsedText:
        raise MalformedSource("bad annotations")

    monkeypatch.setattr(orchestrator_module, "parse_iiif_annotations", _broken)
    store = TextStore()
    orchestrator = _orchestrator(store, _viewer([]), RecordingFetcher())

    orchestrator.process_annotation_source(
        "canvas-1",
        "https://example.org/list/1",
        {"resources": [_annotation({"chars": "text"})]},
        canvas_size,
    )

    assert store.get("canvas-1").status == "failed"
    assert store.get("canvas-1").error == "bad annotations"


def test_superseded_fetch_results_are_discarded() -> None:
    store = TextStore()
    executor = DeferredExecutor()
    fetcher = RecordingFetcher({ALTO_URI.format(1): read_fixture("alto_mm10.xml")})
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)]), fetcher, executor)

    orchestrator.discover(["canvas-1"], WINDOW)
    stale_future, _ = executor.pending[0]
    store.reset("canvas-1")
    orchestrator.discover(["canvas-1"], WINDOW)
    executor.run_all()

    assert stale_future.result() is None
    entry = store.get("canvas-1")
    assert entry.status == "fetched"
    assert entry.generation == 2


def test_config_change_requests_pending_canvases() -> None:
    store = TextStore()
    fetcher = RecordingFetcher({ALTO_URI.format(1): read_fixture("alto_mm10.xml")})
    viewer = _viewer([_ocr_canvas(1)], HIDDEN)
    orchestrator = _orchestrator(store, viewer, fetcher)
    orchestrator.discover(["canvas-1"], WINDOW)
    assert store.status("canvas-1") == "discovered"

    futures = orchestrator.on_config_change(
        WINDOW, {"textOverlay": {"enabled": True, "visible": True}}
    )

    assert len(futures) == 1
    assert store.status("canvas-1") == "fetched"


def test_config_change_resets_annotation_and_failed_entries() -> None:
    store = TextStore()
    fetcher = RecordingFetcher(
        {
            LIST_URI.format(1): {"resources": [_annotation({"chars": "annotated"})]},
            ALTO_URI.format(3): read_fixture("alto_mm10.xml"),
        }
    )
    canvases = [_annos_canvas(1), _ocr_canvas(2), _ocr_canvas(3)]
    orchestrator = _orchestrator(store, _viewer(canvases), fetcher)
    orchestrator.discover(["canvas-1", "canvas-2", "canvas-3"], WINDOW)
    assert store.status("canvas-2") == "failed"
    before = {target: entry.generation for target, entry in store.entries().items()}
    fetcher.responses[ALTO_URI.format(2)] = read_fixture("alto_mm10.xml")

    orchestrator.on_config_change(WINDOW, SELECTABLE)

    after = store.entries()
    assert after["canvas-1"].generation > before["canvas-1"]
    assert after["canvas-2"].status == "fetched"
    assert after["canvas-3"].generation == before["canvas-3"]
    assert fetcher.calls.count(ALTO_URI.format(3)) == 1


def test_config_change_without_fetching_does_nothing() -> None:
    store = TextStore()
    fetcher = RecordingFetcher()
    orchestrator = _orchestrator(store, _viewer([_ocr_canvas(1)]), fetcher)

    assert orchestrator.on_config_change(WINDOW, HIDDEN) == []
    assert store.entries() == {}


def test_handle_routes_events() -> None:
    store = TextStore()
    fetcher = RecordingFetcher({ALTO_URI.format(1): read_fixture("alto_mm10.xml")})
    viewer = _viewer([_ocr_canvas(1)], HIDDEN)
    orchestrator = _orchestrator(store, viewer, fetcher)

    orchestrator.handle(DiscoverRequest(("canvas-1",), WINDOW))
    assert store.status("canvas-1") == "discovered"

    orchestrator.handle(ConfigChanged(WINDOW, SELECTABLE))
    assert store.status("canvas-1") == "fetched"

    with pytest.raises(TypeError):
        orchestrator.handle("refresh")


def test_concurrent_fetches_each_write_once() -> None:
    canvases = [_ocr_canvas(index) for index in range(12)]
    markup = read_fixture("alto_mm10.xml")
    fetcher = RecordingFetcher(
        {canvas.text_association.uri: markup for canvas in canvases}
    )
    store = TextStore()
    received: list[str] = []
    lock = threading.Lock()

    def _on_signal(signal: Signal) -> None:
        if isinstance(signal, Received):
            with lock:
                received.append(signal.target_id)

    store.subscribe(_on_signal)
    with ThreadPoolExecutor(max_workers=4) as pool:
        orchestrator = _orchestrator(store, _viewer(canvases), fetcher, pool)
        futures = orchestrator.discover([canvas.id for canvas in canvases], WINDOW)
        for future in futures:
            future.result(timeout=10)

    assert sorted(received) == sorted(canvas.id for canvas in canvases)
    assert all(entry.status == "fetched" for entry in store.entries().values())
    assert sorted(fetcher.calls) == sorted(
        canvas.text_association.uri for canvas in canvases
    )


def test_owned_executor_is_shut_down_on_exit() -> None:
    store = TextStore()
    fetcher = RecordingFetcher({ALTO_URI.format(1): read_fixture("alto_mm10.xml")})

    with TextOverlayOrchestrator(store, _viewer([_ocr_canvas(1)]), fetcher) as orch:
        orch.discover(["canvas-1"], WINDOW)

    assert store.status("canvas-1") == "fetched"


def test_config_change_keeps_host_pushed_annotations(canvas_size: CanvasSize) -> None:
    store = TextStore()
    fetcher = RecordingFetcher()
    canvas = CanvasInfo(id="pushed", width=500, height=1000)
    orchestrator = _orchestrator(store, _viewer([canvas], HIDDEN), fetcher)
    orchestrator.process_annotation_source(
        "pushed",
        "https://example.org/list/pushed",
        {"resources": [_annotation({"chars": "pushed text"})]},
        canvas_size,
    )
    assert store.status("pushed") == "fetched"

    orchestrator.on_config_change(
        WINDOW, TextOverlayConfig(selectable=True, visible=True)
    )

    entry = store.get("pushed")
    assert entry is not None
    assert entry.status == "fetched"
    assert entry.parsed_text.text == "pushed text"
    assert fetcher.calls == []


def test_non_finite_coordinates_fail_the_canvas() -> None:
    store = TextStore()
    markup = read_fixture("alto_mm10.xml").replace('HPOS="150"', 'HPOS="nan"')
    fetcher = RecordingFetcher({ALTO_URI.format(1): markup})
    orchestrator = _orchestrator(store, _viewer([]), fetcher)

    orchestrator.fetch_and_parse(
        "canvas-1",
        ALTO_URI.format(1),
        CanvasSize(width=2000, height=3000),
        media_type="application/xml+alto",
    )

    entry = store.get("canvas-1")
    assert entry is not None
    assert entry.status == "failed"
    assert "HPOS" in entry.error
