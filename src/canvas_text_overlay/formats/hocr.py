import logging
import math
import re

from bs4 import BeautifulSoup, Tag

from canvas_text_overlay.errors import MalformedSource
from canvas_text_overlay.formats.units import UnitConverter
from canvas_text_overlay.models import CanvasSize, Line, ParsedText, Word
from canvas_text_overlay.text import join_words, normalize_text

logger = logging.getLogger(__name__)

LINE_CLASSES = frozenset(
    {"ocr_line", "ocrx_line", "ocr_caption", "ocr_textfloat", "ocr_header"}
)
WORD_CLASS = "ocrx_word"
PAGE_CLASS = "ocr_page"

_BBOX_RE = re.compile(r"bbox:?\s+(\S+)\s+(\S+)\s+(\S+)\s+(\S+)")
_FSIZE_RE = re.compile(r"x_fsize\s+(\S+)")


def _classes(element: Tag) -> set[str]:
    value = element.get("class") or []
    if isinstance(value, str):
        return set(value.split())
    return set(value)


def _title(element: Tag) -> str:
    value = element.get("title") or ""
    return value if isinstance(value, str) else " ".join(value)


def _bbox(element: Tag) -> tuple[float, float, float, float] | None:
    """Read the `bbox x1 y1 x2 y2` property from an hOCR title attribute."""
    match = _BBOX_RE.search(_title(element))
    if match is None:
        return None
    try:
        x1, y1, x2, y2 = (float(value.rstrip(";")) for value in match.groups())
    except ValueError as exc:
        raise MalformedSource(
            f"Non-numeric bbox in hOCR title {_title(element)!r}"
        ) from exc
    if not all(math.isfinite(value) for value in (x1, y1, x2, y2)):
        raise MalformedSource(f"Non-finite bbox in hOCR title {_title(element)!r}")
    return x1, y1, x2, y2


def _font_size(
    element: Tag,
    converter: UnitConverter,
) -> dict[str, str | float] | None:
    match = _FSIZE_RE.search(_title(element))
    if match is None:
        return None
    try:
        size = float(match.group(1).rstrip(";"))
    except ValueError:
        logger.debug("Ignoring non-numeric x_fsize in %r", _title(element))
        return None
    if not math.isfinite(size):
        return None
    return {"font_size": converter.length(size)}


def _page_converter(soup: BeautifulSoup, canvas: CanvasSize) -> UnitConverter:
    page = soup.find(class_=PAGE_CLASS)
    if not isinstance(page, Tag):
        return UnitConverter.identity(canvas)
    bbox = _bbox(page)
    if bbox is None:
        return UnitConverter.identity(canvas)
    x1, y1, x2, y2 = bbox
    return UnitConverter.for_page(x2 - x1, y2 - y1, canvas, origin=(x1, y1))


def _is_line(element: Tag) -> bool:
    return bool(_classes(element) & LINE_CLASSES)


def _parse_line(element: Tag, converter: UnitConverter) -> Line | None:
    bbox = _bbox(element)
    if bbox is None:
        logger.debug("Skipping hOCR line without bbox: %r", _title(element))
        return None
    words: list[Word] = []
    for word_element in element.find_all(class_=WORD_CLASS):
        word_bbox = _bbox(word_element)
        text = normalize_text(word_element.get_text(" "))
        if word_bbox is None or not text:
            continue
        words.append(
            Word(
                text=text,
                box=converter.corners(*word_bbox),
                style=_font_size(word_element, converter),
            )
        )
    if words:
        text = join_words([word.text for word in words])
    else:
        text = normalize_text(element.get_text(" "))
    return Line(
        text=text,
        box=converter.corners(*bbox),
        words=words,
        style=_font_size(element, converter),
    )


def parse_hocr(raw: str | bytes, canvas: CanvasSize) -> ParsedText:
    """Parse hOCR markup into the normalized text model.

    Line elements become `Line`s and their `ocrx_word` descendants become
    `Word`s. A line without word markup keeps its own text and no words. When
    the `ocr_page` bbox differs from `canvas`, coordinates are scaled to it.

    Raises:
        MalformedSource: the markup has no hOCR line or page elements, or a
            bbox value is not numeric.
    """
    soup = BeautifulSoup(raw, "html.parser")
    line_elements = [element for element in soup.find_all(True) if _is_line(element)]
    if not line_elements and soup.find(class_=PAGE_CLASS) is None:
        raise MalformedSource("Markup contains no hOCR page or line elements")
    converter = _page_converter(soup, canvas)

    lines: list[Line] = []
    for element in line_elements:
        # Nested line markers (e.g. ocr_line inside ocr_caption) count once.
        if any(
            _is_line(parent) for parent in element.parents if isinstance(parent, Tag)
        ):
            continue
        line = _parse_line(element, converter)
        if line is not None:
            lines.append(line)
    logger.debug("Parsed %d hOCR lines", len(lines))
    return ParsedText(width=canvas.width, height=canvas.height, lines=lines)
