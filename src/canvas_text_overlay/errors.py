class TextOverlayError(Exception):
    """Base class for failures recorded against a single canvas."""


class TransportError(TextOverlayError):
    """Fetching a URI failed (network error, timeout or non-success status)."""

    def __init__(self, uri: str, message: str) -> None:
        super().__init__(f"Could not fetch {uri}: {message}")
        self.uri = uri


class MalformedSource(TextOverlayError):
    """Markup is structurally invalid for the detected format."""


class UnresolvableReference(TextOverlayError):
    """An external annotation resource could not be fetched or sliced."""

    def __init__(self, resource_id: str, message: str) -> None:
        super().__init__(f"Could not resolve {resource_id}: {message}")
        self.resource_id = resource_id
