import logging
import math
import xml.etree.ElementTree as ET
from collections.abc import Iterator, Mapping

from canvas_text_overlay.errors import MalformedSource
from canvas_text_overlay.formats.units import DEFAULT_DPI, UnitConverter
from canvas_text_overlay.models import CanvasSize, Line, ParsedText, Word
from canvas_text_overlay.text import join_words, normalize_text

logger = logging.getLogger(__name__)

_BLOCK_TAGS = frozenset({"TextBlock", "ComposedBlock"})
_PAGE_REGION_TAGS = frozenset(
    {"PrintSpace", "TopMargin", "BottomMargin", "LeftMargin", "RightMargin"}
)


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _first_descendant(element: ET.Element, name: str) -> ET.Element | None:
    for descendant in element.iter():
        if _local_name(descendant.tag) == name:
            return descendant
    return None


def _number(element: ET.Element, attribute: str) -> float | None:
    raw = element.get(attribute)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        raise MalformedSource(
            f"Non-numeric {attribute}={raw!r} on ALTO <{_local_name(element.tag)}>"
        )
    return value


def _position(
    element: ET.Element,
    origin: tuple[float, float],
) -> tuple[float, float, float, float]:
    """Read HPOS/VPOS/WIDTH/HEIGHT in source units.

    Elements without a position collapse to a zero-area box at `origin`, the
    nearest positioned ancestor.
    """
    hpos = _number(element, "HPOS")
    vpos = _number(element, "VPOS")
    width = _number(element, "WIDTH")
    height = _number(element, "HEIGHT")
    if hpos is None or vpos is None:
        return origin[0], origin[1], 0.0, 0.0
    return hpos, vpos, width or 0.0, height or 0.0


def _text_styles(root: ET.Element) -> dict[str, dict[str, str | float]]:
    styles: dict[str, dict[str, str | float]] = {}
    for element in root.iter():
        if _local_name(element.tag) != "TextStyle":
            continue
        style_id = element.get("ID")
        if not style_id:
            continue
        style: dict[str, str | float] = {}
        family = element.get("FONTFAMILY")
        if family:
            style["font_family"] = family
        size = element.get("FONTSIZE")
        if size:
            try:
                style["font_size_pt"] = float(size)
            except ValueError:
                logger.debug("Ignoring non-numeric FONTSIZE=%r", size)
        style_flags = element.get("FONTSTYLE")
        if style_flags:
            style["font_style"] = style_flags
        styles[style_id] = style
    return styles


def _style_for(
    element: ET.Element,
    styles: Mapping[str, dict[str, str | float]],
    inherited: dict[str, str | float] | None,
) -> dict[str, str | float] | None:
    refs = (element.get("STYLEREFS") or "").split()
    resolved: dict[str, str | float] = dict(inherited or {})
    for ref in refs:
        resolved.update(styles.get(ref, {}))
    return resolved or None


def _parse_line(
    line_element: ET.Element,
    origin: tuple[float, float],
    converter: UnitConverter,
    styles: Mapping[str, dict[str, str | float]],
    block_style: dict[str, str | float] | None,
) -> Line:
    lx, ly, lw, lh = _position(line_element, origin)
    line_style = _style_for(line_element, styles, block_style)
    words: list[Word] = []
    pieces: list[str] = []
    for child in line_element:
        name = _local_name(child.tag)
        if name == "String":
            content = normalize_text(child.get("CONTENT") or "")
            x, y, w, h = _position(child, (lx, ly))
            words.append(
                Word(
                    text=content,
                    box=converter.rect(x, y, w, h),
                    style=_style_for(child, styles, line_style),
                )
            )
            pieces.append(content)
        elif name == "HYP":
            hyphen = child.get("CONTENT") or "-"
            if pieces:
                pieces[-1] = pieces[-1] + hyphen
    return Line(
        text=join_words(pieces),
        box=converter.rect(lx, ly, lw, lh),
        words=words,
        style=line_style,
    )


def _walk_blocks(
    element: ET.Element,
    origin: tuple[float, float],
    converter: UnitConverter,
    styles: Mapping[str, dict[str, str | float]],
    inherited_style: dict[str, str | float] | None,
) -> Iterator[Line]:
    for child in element:
        name = _local_name(child.tag)
        if name in _BLOCK_TAGS:
            x, y, _, _ = _position(child, origin)
            block_style = _style_for(child, styles, inherited_style)
            yield from _walk_blocks(child, (x, y), converter, styles, block_style)
        elif name == "TextLine":
            yield _parse_line(child, origin, converter, styles, inherited_style)


def parse_alto(
    raw: str | bytes,
    canvas: CanvasSize,
    *,
    dpi: float = DEFAULT_DPI,
) -> ParsedText:
    """Parse an ALTO document into the normalized text model.

    Walks Page -> PrintSpace (and margins) -> TextBlock -> TextLine -> String.
    Coordinates are scaled from the declared page dimensions to `canvas`; when
    the page has no dimensions, physical units are converted at `dpi`.

    Raises:
        MalformedSource: the document is not XML, has no Page element, or a
            required coordinate is not numeric.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise MalformedSource(f"Invalid ALTO XML: {exc}") from exc
    if _local_name(root.tag) != "alto":
        raise MalformedSource(
            f"Unexpected ALTO root element <{_local_name(root.tag)}>"
        )
    page = _first_descendant(root, "Page")
    if page is None:
        raise MalformedSource("ALTO document has no <Page> element")

    unit_element = _first_descendant(root, "MeasurementUnit")
    unit = (unit_element.text or "").strip() if unit_element is not None else "pixel"
    converter = UnitConverter.for_unit(
        unit,
        canvas,
        page_width=_number(page, "WIDTH"),
        page_height=_number(page, "HEIGHT"),
        dpi=dpi,
    )
    styles = _text_styles(root)
    page_style = _style_for(page, styles, None)

    lines: list[Line] = []
    regions = [child for child in page if _local_name(child.tag) in _PAGE_REGION_TAGS]
    for region in regions or [page]:
        x, y, _, _ = _position(region, (0.0, 0.0))
        lines.extend(_walk_blocks(region, (x, y), converter, styles, page_style))
    logger.debug("Parsed %d ALTO lines (unit=%s)", len(lines), unit or "pixel")
    return ParsedText(width=canvas.width, height=canvas.height, lines=lines)
