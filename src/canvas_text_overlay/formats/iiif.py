import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from canvas_text_overlay.annotations import (
    Annotation,
    annotation_body,
    content_text,
    document_type,
    target_region,
)
from canvas_text_overlay.errors import MalformedSource
from canvas_text_overlay.formats.units import UnitConverter, full_canvas
from canvas_text_overlay.models import CanvasSize, Line, ParsedText, Rectangle, Word
from canvas_text_overlay.text import join_words, normalize_text

logger = logging.getLogger(__name__)


@dataclass
class _LineBuilder:
    text: str
    box: Rectangle
    words: list[Word] = field(default_factory=list)

    def build(self) -> Line:
        text = self.text or join_words([word.text for word in self.words])
        return Line(text=text, box=self.box, words=self.words)


def _target_box(annotation: Annotation, canvas: CanvasSize) -> Rectangle:
    region = target_region(annotation)
    if region is None:
        return full_canvas(canvas)
    unit, x, y, w, h = region
    if unit == "percent":
        converter = UnitConverter.for_percent(canvas)
    else:
        converter = UnitConverter.identity(canvas)
    return converter.rect(x, y, w, h)


def _owning_line(word_box: Rectangle, lines: Sequence[_LineBuilder]) -> _LineBuilder:
    """Pick the line a word belongs to.

    The smallest line that fully contains the word wins, later lines winning
    ties; without any containing line the most recently emitted line is used.
    """
    best: _LineBuilder | None = None
    for line in lines:
        if not line.box.contains(word_box):
            continue
        if best is None or line.box.area <= best.box.area:
            best = line
    return best if best is not None else lines[-1]


def parse_iiif_annotations(
    annotations: Sequence[Mapping[str, object]],
    canvas: CanvasSize,
) -> ParsedText:
    """Assemble lines and words from filtered, resolved IIIF annotations.

    `Line` annotations open a new line, `Word` annotations attach to the line
    that encloses them, and text annotations without a structure type become
    a line of their own with no words.

    Raises:
        MalformedSource: `annotations` is not a sequence of annotation objects.
    """
    if isinstance(annotations, (str, bytes)) or not isinstance(annotations, Sequence):
        raise MalformedSource("IIIF annotations must be a list of objects")
    lines: list[_LineBuilder] = []
    for annotation in annotations:
        if not isinstance(annotation, Mapping):
            raise MalformedSource(f"Unexpected annotation entry {annotation!r}")
        text = normalize_text(content_text(annotation_body(annotation)) or "")
        box = _target_box(annotation, canvas)
        structure = document_type(annotation)
        if structure == "Word":
            if not text:
                continue
            word = Word(text=text, box=box)
            if lines:
                _owning_line(box, lines).words.append(word)
            else:
                lines.append(_LineBuilder(text="", box=box, words=[word]))
        elif structure == "Line":
            lines.append(_LineBuilder(text=text, box=box))
        elif text:
            lines.append(_LineBuilder(text=text, box=box))
    logger.debug("Assembled %d lines from %d annotations", len(lines), len(annotations))
    return ParsedText(
        width=canvas.width,
        height=canvas.height,
        lines=[line.build() for line in lines],
    )
