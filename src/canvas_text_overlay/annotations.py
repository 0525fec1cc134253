"""Accessors for IIIF annotation lists (Presentation v2) and pages (v3).

Both shapes are read through the helpers here so the resolver and the parser
never branch on the version themselves.
"""

import re
from collections.abc import Mapping, Sequence

Annotation = Mapping[str, object]

_CHAR_FRAGMENT_RE = re.compile(r"#char=(\d+),(\d+)$")
_NUMBER = r"(-?\d+(?:\.\d+)?)"
_XYWH_RE = re.compile(
    r"xywh=(?:(pixel|percent):)?\s*" + r"\s*,\s*".join([_NUMBER] * 4)
)
_PLAIN_TEXT_TYPES = frozenset({"cnt:contentastext", "textualbody"})
_STRUCTURE_TYPES = {"line": "Line", "word": "Word"}


def annotation_items(annotation_json: Mapping[str, object]) -> list[Annotation]:
    """Return the annotations of a v2 list (`resources`) or v3 page (`items`)."""
    for key in ("resources", "items"):
        value = annotation_json.get(key)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            return [item for item in value if isinstance(item, Mapping)]
    return []


def body_key(annotation: Annotation) -> str:
    if "body" in annotation and "resource" not in annotation:
        return "body"
    return "resource"


def annotation_body(annotation: Annotation) -> Mapping[str, object] | None:
    body = annotation.get(body_key(annotation))
    if isinstance(body, Sequence) and not isinstance(body, (str, bytes)):
        body = next((item for item in body if isinstance(item, Mapping)), None)
    if isinstance(body, Mapping):
        return body
    return None


def _short_name(value: str) -> str:
    return value.rsplit(":", 1)[-1].lower()


def motivations(annotation: Annotation) -> set[str]:
    raw = annotation.get("motivation")
    if isinstance(raw, str):
        values = [raw]
    elif isinstance(raw, Sequence) and not isinstance(raw, bytes):
        values = [value for value in raw if isinstance(value, str)]
    else:
        values = []
    return {_short_name(value) for value in values}


def document_type(annotation: Annotation) -> str | None:
    """Return `"Line"`, `"Word"` or None from `dcType`/`textGranularity`."""
    body = annotation_body(annotation) or {}
    for source in (annotation, body):
        for key in ("dcType", "textGranularity"):
            value = source.get(key)
            if isinstance(value, str) and value.lower() in _STRUCTURE_TYPES:
                return _STRUCTURE_TYPES[value.lower()]
    return None


def is_plain_text(resource: Mapping[str, object] | None) -> bool:
    if not resource:
        return False
    for key in ("@type", "type"):
        value = resource.get(key)
        if isinstance(value, str) and value.lower() in _PLAIN_TEXT_TYPES:
            return True
    media_type = resource.get("format")
    return isinstance(media_type, str) and media_type.startswith("text/plain")


def is_text_annotation(annotation: Annotation) -> bool:
    """Whether an annotation carries text for the overlay.

    Painting annotations (the page image itself) are never text, whatever
    else they declare.
    """
    found = motivations(annotation)
    if "painting" in found:
        return False
    return (
        "supplementing" in found
        or is_plain_text(annotation_body(annotation))
        or document_type(annotation) is not None
    )


def resource_id(resource: Mapping[str, object] | None) -> str | None:
    if not resource:
        return None
    for key in ("@id", "id"):
        value = resource.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def content_text(resource: Mapping[str, object] | None) -> str | None:
    """Return the inline text of a resource (`chars`, `value` or `content`)."""
    if not resource:
        return None
    for key in ("chars", "value", "content"):
        value = resource.get(key)
        if isinstance(value, str):
            return value
    return None


def split_char_fragment(identifier: str) -> tuple[str, tuple[int, int] | None]:
    """Split `uri#char=start,length` into the base URI and the range.

    Identifiers without a character fragment are returned unchanged; any other
    fragment is stripped from the base URI.
    """
    match = _CHAR_FRAGMENT_RE.search(identifier)
    if match is not None:
        base = identifier[: match.start()]
        return base, (int(match.group(1)), int(match.group(2)))
    return identifier.split("#", 1)[0], None


def slice_chars(text: str, char_range: tuple[int, int]) -> str:
    """Slice the half-open range `[start, start + length)`, clamped to `text`."""
    start, length = char_range
    start = min(max(start, 0), len(text))
    end = min(start + max(length, 0), len(text))
    return text[start:end]


def _selector_value(target: object) -> str | None:
    if isinstance(target, str):
        return target
    if isinstance(target, Sequence) and not isinstance(target, bytes):
        for item in target:
            value = _selector_value(item)
            if value:
                return value
        return None
    if not isinstance(target, Mapping):
        return None
    selector = target.get("selector")
    if selector is not None:
        value = _selector_value(selector)
        if value:
            return value
    for key in ("value", "@id", "id"):
        value = target.get(key)
        if isinstance(value, str):
            return value
    return None


def target_region(
    annotation: Annotation,
) -> tuple[str, float, float, float, float] | None:
    """Return `(unit, x, y, w, h)` from the annotation's `xywh` selector.

    `unit` is `"pixel"` or `"percent"`; None when no region is selected, which
    means the whole canvas is targeted.
    """
    for key in ("on", "target"):
        if key not in annotation:
            continue
        value = _selector_value(annotation[key])
        if not value:
            continue
        match = _XYWH_RE.search(value)
        if match is None:
            continue
        unit = match.group(1) or "pixel"
        x, y, w, h = (float(part) for part in match.groups()[1:])
        return unit, x, y, w, h
    return None
