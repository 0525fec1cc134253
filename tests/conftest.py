import json
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest

from canvas_text_overlay.errors import TransportError
from canvas_text_overlay.models import CanvasSize

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class RecordingFetcher:
    """Fetch stub serving canned bodies and recording every requested URI.

    Values may be text, JSON-serializable objects, or exceptions to raise.
    Unknown URIs fail like a 404.
    """

    def __init__(self, responses: Mapping[str, object] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch_text(self, uri: str) -> str:
        with self._lock:
            self.calls.append(uri)
        if uri not in self.responses:
            raise TransportError(uri, "404 Client Error: Not Found")
        value = self.responses[uri]
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, str):
            return value
        return json.dumps(value)

    def fetch_json(self, uri: str) -> object:
        return json.loads(self.fetch_text(uri))


class ImmediateExecutor(Executor):
    """Executor that runs tasks inline so signal order is deterministic."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(
        self,
        fn: Callable[..., object],
        /,
        *args: object,
        **kwargs: object,
    ) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


def read_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


@pytest.fixture
def canvas_size() -> CanvasSize:
    return CanvasSize(width=500, height=1000)


@pytest.fixture
def alto_markup() -> str:
    return read_fixture("alto_mm10.xml")


@pytest.fixture
def hocr_markup() -> str:
    return read_fixture("page.hocr")
