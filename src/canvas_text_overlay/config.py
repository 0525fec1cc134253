import logging
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class TextOverlayConfig(BaseModel):
    """Per-window text overlay options."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = True
    selectable: bool = False
    visible: bool = False
    opacity: float = Field(default=0.5, ge=0.0, le=1.0)

    @property
    def fetch_wanted(self) -> bool:
        """Whether texts should be fetched at all.

        An overlay that is neither selectable nor visible never reaches the
        user, so fetching for it is wasted work.
        """
        return self.enabled and (self.selectable or self.visible)


DEFAULT_TEXT_OVERLAY_CONFIG = TextOverlayConfig()
DISABLED_TEXT_OVERLAY_CONFIG = TextOverlayConfig(enabled=False)


def resolve_overlay_config(
    window_config: Mapping[str, object] | None,
    *,
    defaults: TextOverlayConfig = DEFAULT_TEXT_OVERLAY_CONFIG,
) -> TextOverlayConfig:
    """Read the `textOverlay` options from a host window configuration.

    Args:
        window_config: Host window configuration, e.g. `{"textOverlay": {...}}`.
        defaults: Plugin defaults the window options are merged over.
    Returns:
        The merged configuration. Missing or invalid options resolve to a
        disabled configuration instead of raising.
    """
    if not isinstance(window_config, Mapping):
        return DISABLED_TEXT_OVERLAY_CONFIG
    options = window_config.get("textOverlay")
    if options is None:
        return DISABLED_TEXT_OVERLAY_CONFIG
    if isinstance(options, TextOverlayConfig):
        return options
    if not isinstance(options, Mapping):
        logger.warning("Ignoring non-mapping textOverlay options: %r", options)
        return DISABLED_TEXT_OVERLAY_CONFIG
    merged = {**defaults.model_dump(), **options}
    try:
        return TextOverlayConfig.model_validate(merged)
    except ValidationError as exc:
        logger.warning("Invalid textOverlay options %r: %s", options, exc)
        return DISABLED_TEXT_OVERLAY_CONFIG
