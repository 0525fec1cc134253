import json
import logging
from collections.abc import Callable
from typing import Literal

from canvas_text_overlay.annotations import annotation_items, is_text_annotation
from canvas_text_overlay.errors import MalformedSource
from canvas_text_overlay.formats.alto import parse_alto
from canvas_text_overlay.formats.hocr import parse_hocr
from canvas_text_overlay.formats.iiif import parse_iiif_annotations
from canvas_text_overlay.models import CanvasSize, ParsedText

logger = logging.getLogger(__name__)

SourceFormat = Literal["alto", "hocr", "iiif"]
SourceType = Literal["ocr", "annos"]

MEDIA_TYPE_FORMATS: dict[str, SourceFormat] = {
    "application/xml+alto": "alto",
    "application/alto+xml": "alto",
    "text/vnd.hocr+html": "hocr",
    "application/vnd.hocr+html": "hocr",
    "application/ld+json": "iiif",
    "sc:annotationlist": "iiif",
    "annotationlist": "iiif",
    "annotationpage": "iiif",
}
_SNIFF_BYTES = 4096
_HOCR_MARKERS = ("ocr_page", "ocr_line", "ocrx_line", "ocrx_word")


def _base_media_type(media_type: str | None) -> str:
    return (media_type or "").split(";", 1)[0].strip().lower()


def format_for(
    media_type: str | None,
    profile: str | None = None,
) -> SourceFormat | None:
    """Map a declared media type (and optional profile URI) to a format."""
    found = MEDIA_TYPE_FORMATS.get(_base_media_type(media_type))
    if found is not None:
        return found
    hint = f"{media_type or ''} {profile or ''}".lower()
    if "alto" in hint:
        return "alto"
    if "hocr" in hint:
        return "hocr"
    return None


def source_type_for(source_format: SourceFormat | None) -> SourceType | None:
    if source_format is None:
        return None
    return "annos" if source_format == "iiif" else "ocr"


def sniff_format(raw: str | bytes) -> SourceFormat | None:
    """Guess the format from the first bytes of the content."""
    head = raw[:_SNIFF_BYTES]
    if isinstance(head, bytes):
        head = head.decode("utf-8", errors="ignore")
    stripped = head.lstrip("\ufeff \t\r\n")
    if stripped.startswith(("{", "[")):
        return "iiif"
    lowered = stripped.lower()
    if "<alto" in lowered:
        return "alto"
    if any(marker in lowered for marker in _HOCR_MARKERS):
        return "hocr"
    return None


def detect_format(raw: str | bytes, media_type: str | None = None) -> SourceFormat:
    """Pick the parser for `raw`, trusting a recognized media type first.

    Raises:
        MalformedSource: neither the media type nor the content identify a
            supported format.
    """
    declared = format_for(media_type)
    if declared is not None:
        return declared
    sniffed = sniff_format(raw)
    if sniffed is None:
        raise MalformedSource(
            f"Unsupported text format (media type {media_type or 'unknown'!r})"
        )
    logger.debug("Sniffed %s content for media type %r", sniffed, media_type)
    return sniffed


def _parse_iiif_document(raw: str | bytes, canvas: CanvasSize) -> ParsedText:
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedSource(f"Invalid annotation JSON: {exc}") from exc
    if isinstance(document, list):
        items = [item for item in document if isinstance(item, dict)]
    elif isinstance(document, dict):
        items = annotation_items(document)
    else:
        raise MalformedSource("Annotation JSON must be an object or a list")
    return parse_iiif_annotations(
        [item for item in items if is_text_annotation(item)], canvas
    )


PARSERS: dict[SourceFormat, Callable[[str | bytes, CanvasSize], ParsedText]] = {
    "alto": parse_alto,
    "hocr": parse_hocr,
    "iiif": _parse_iiif_document,
}


def parse_text(
    raw: str | bytes,
    canvas: CanvasSize,
    *,
    media_type: str | None = None,
) -> ParsedText:
    """Detect the format of `raw` and parse it against `canvas`."""
    return PARSERS[detect_format(raw, media_type)](raw, canvas)


__all__ = [
    "MEDIA_TYPE_FORMATS",
    "PARSERS",
    "SourceFormat",
    "SourceType",
    "detect_format",
    "format_for",
    "parse_alto",
    "parse_hocr",
    "parse_iiif_annotations",
    "parse_text",
    "sniff_format",
    "source_type_for",
]
