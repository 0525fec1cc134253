import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from canvas_text_overlay.annotations import motivations, resource_id
from canvas_text_overlay.formats import (
    SourceFormat,
    SourceType,
    format_for,
    source_type_for,
)
from canvas_text_overlay.models import CanvasSize

logger = logging.getLogger(__name__)

ANNOTATION_LIST_MEDIA_TYPE = "sc:AnnotationList"


@dataclass(frozen=True)
class TextAssociation:
    """External text resource linked from a canvas."""

    uri: str
    media_type: str | None
    profile: str | None = None

    @property
    def source_format(self) -> SourceFormat | None:
        return format_for(self.media_type, self.profile)

    @property
    def source_type(self) -> SourceType | None:
        return source_type_for(self.source_format)


@dataclass(frozen=True)
class CanvasInfo:
    """Canvas metadata the orchestrator needs."""

    id: str
    width: float
    height: float
    text_association: TextAssociation | None = None

    @property
    def canvas_size(self) -> CanvasSize:
        return CanvasSize(width=self.width, height=self.height)


class ViewerState(Protocol):
    """Read access to the host viewer's window and canvas state."""

    def window_config(self, window_id: str) -> Mapping[str, object] | None: ...

    def canvases(self, window_id: str) -> Sequence[CanvasInfo]: ...

    def visible_canvas_ids(self, window_id: str) -> Sequence[str]: ...


@dataclass
class StaticViewerState:
    """In-memory viewer state for embedding and tests."""

    configs: dict[str, Mapping[str, object]] = field(default_factory=dict)
    canvases_by_window: dict[str, list[CanvasInfo]] = field(default_factory=dict)
    visible: dict[str, list[str]] = field(default_factory=dict)

    def window_config(self, window_id: str) -> Mapping[str, object] | None:
        return self.configs.get(window_id)

    def canvases(self, window_id: str) -> Sequence[CanvasInfo]:
        return self.canvases_by_window.get(window_id, [])

    def visible_canvas_ids(self, window_id: str) -> Sequence[str]:
        return self.visible.get(window_id, [])


def _as_list(value: object) -> list[object]:
    if value is None:
        return []
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return list(value)
    return [value]


def _number(value: object) -> float:
    if not isinstance(value, (int, float, str)):
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0


def _ocr_association(canvas_json: Mapping[str, object]) -> TextAssociation | None:
    for link in _as_list(canvas_json.get("seeAlso")):
        if not isinstance(link, Mapping):
            continue
        uri = resource_id(link)
        media_type = link.get("format")
        profile = link.get("profile")
        association = TextAssociation(
            uri=uri or "",
            media_type=media_type if isinstance(media_type, str) else None,
            profile=profile if isinstance(profile, str) else None,
        )
        if uri and association.source_type == "ocr":
            return association
        logger.debug("Ignoring seeAlso %r without a recognized OCR format", uri)
    return None


def _annotation_association(
    canvas_json: Mapping[str, object],
) -> TextAssociation | None:
    links = _as_list(canvas_json.get("otherContent")) + _as_list(
        canvas_json.get("annotations")
    )
    for link in links:
        if isinstance(link, str):
            return TextAssociation(uri=link, media_type=ANNOTATION_LIST_MEDIA_TYPE)
        if not isinstance(link, Mapping) or "painting" in motivations(link):
            continue
        uri = resource_id(link)
        if uri:
            return TextAssociation(uri=uri, media_type=ANNOTATION_LIST_MEDIA_TYPE)
    return None


def canvas_info_from_iiif(canvas_json: Mapping[str, object]) -> CanvasInfo:
    """Build `CanvasInfo` from IIIF Presentation v2 or v3 canvas JSON.

    A recognized OCR `seeAlso` link wins; otherwise the first non-painting
    annotation list or page is used.
    """
    association = _ocr_association(canvas_json) or _annotation_association(
        canvas_json
    )
    return CanvasInfo(
        id=resource_id(canvas_json) or "",
        width=_number(canvas_json.get("width")),
        height=_number(canvas_json.get("height")),
        text_association=association,
    )
