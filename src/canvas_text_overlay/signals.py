from dataclasses import dataclass

from canvas_text_overlay.formats import SourceType
from canvas_text_overlay.models import CanvasSize, ParsedText


@dataclass(frozen=True)
class Discovered:
    """A canvas was found to have a text source."""

    target_id: str
    source_uri: str
    source_type: SourceType
    generation: int | None = None


@dataclass(frozen=True)
class Requested:
    """A fetch was issued for a discovered canvas."""

    target_id: str
    source_uri: str
    canvas_size: CanvasSize
    generation: int | None = None


@dataclass(frozen=True)
class Received:
    """Text for a canvas was fetched and parsed.

    `generation` ties the result to the request that produced it; None marks a
    write pushed by the host, which always wins.
    """

    target_id: str
    source_uri: str
    source_type: SourceType
    parsed_text: ParsedText
    generation: int | None = None


@dataclass(frozen=True)
class ReceiveFailed:
    """Fetching or parsing text for a canvas failed."""

    target_id: str
    source_uri: str
    error: str
    generation: int | None = None
    source_type: SourceType | None = None


Signal = Discovered | Requested | Received | ReceiveFailed
