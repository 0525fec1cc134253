from canvas_text_overlay.config import TextOverlayConfig, resolve_overlay_config
from canvas_text_overlay.errors import (
    MalformedSource,
    TextOverlayError,
    TransportError,
    UnresolvableReference,
)
from canvas_text_overlay.formats import parse_text
from canvas_text_overlay.models import CanvasSize, Line, ParsedText, Rectangle, Word
from canvas_text_overlay.orchestrator import (
    ConfigChanged,
    DiscoverRequest,
    TextOverlayOrchestrator,
)
from canvas_text_overlay.resolver import resolve_resources
from canvas_text_overlay.store import CanvasTextEntry, TextStore
from canvas_text_overlay.viewer import (
    CanvasInfo,
    StaticViewerState,
    TextAssociation,
    canvas_info_from_iiif,
)

__all__ = [
    "CanvasInfo",
    "CanvasSize",
    "CanvasTextEntry",
    "ConfigChanged",
    "DiscoverRequest",
    "Line",
    "MalformedSource",
    "ParsedText",
    "Rectangle",
    "StaticViewerState",
    "TextAssociation",
    "TextOverlayConfig",
    "TextOverlayError",
    "TextOverlayOrchestrator",
    "TextStore",
    "TransportError",
    "UnresolvableReference",
    "Word",
    "canvas_info_from_iiif",
    "parse_text",
    "resolve_overlay_config",
    "resolve_resources",
]
