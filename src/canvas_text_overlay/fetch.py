import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

import requests
import urllib3

from canvas_text_overlay.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "canvas-text-overlay/0.1"
DEFAULT_TIMEOUT_S = 30.0


class Fetcher(Protocol):
    def fetch_text(self, uri: str) -> str: ...

    def fetch_json(self, uri: str) -> object: ...


@dataclass(frozen=True)
class FetchResponse:
    """Body and declared media type of a successful fetch."""

    text: str
    media_type: str


@dataclass(frozen=True)
class FetchSettings:
    timeout_s: float = DEFAULT_TIMEOUT_S
    user_agent: str = DEFAULT_USER_AGENT
    insecure: bool = False


def get_session(settings: FetchSettings) -> requests.Session:
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": settings.user_agent,
            "Accept": (
                "application/ld+json,application/json,application/xml,"
                "text/html;q=0.9,*/*;q=0.8"
            ),
        }
    )
    s.verify = not settings.insecure
    if settings.insecure:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    return s


class HttpFetcher:
    """Fetch collaborator backed by a `requests.Session`.

    Every failure (connection error, timeout, non-2xx status) surfaces as a
    `TransportError`. Nothing is retried.
    """

    def __init__(
        self,
        settings: FetchSettings | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings or FetchSettings()
        self._session = session or get_session(self._settings)

    def fetch(self, uri: str) -> FetchResponse:
        try:
            r = self._session.get(
                uri,
                timeout=self._settings.timeout_s,
                allow_redirects=True,
            )
            r.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(uri, str(exc)) from exc
        media_type = (r.headers.get("content-type") or "").split(";")[0].strip()
        logger.debug("Fetched %s (%s, %d bytes)", uri, media_type, len(r.content))
        return FetchResponse(text=r.text, media_type=media_type)

    def fetch_text(self, uri: str) -> str:
        return self.fetch(uri).text

    def fetch_json(self, uri: str) -> object:
        text = self.fetch_text(uri)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TransportError(uri, f"response is not JSON ({exc})") from exc

    def close(self) -> None:
        self._session.close()


@lru_cache(maxsize=1)
def _get_default_fetcher() -> HttpFetcher:
    return HttpFetcher()


def _reset_default_fetcher_cache() -> None:
    _get_default_fetcher.cache_clear()
