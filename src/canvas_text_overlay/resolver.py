import copy
import json
import logging
from collections.abc import Iterator, Mapping
from concurrent.futures import Executor, ThreadPoolExecutor

from canvas_text_overlay.annotations import (
    annotation_body,
    annotation_items,
    body_key,
    content_text,
    motivations,
    resource_id,
    slice_chars,
    split_char_fragment,
)
from canvas_text_overlay.errors import TextOverlayError, UnresolvableReference
from canvas_text_overlay.fetch import Fetcher

logger = logging.getLogger(__name__)

_MAX_RESOLVE_WORKERS = 8


def is_external(resource: Mapping[str, object] | None) -> bool:
    """An external resource carries an identifier but no inline text."""
    return resource_id(resource) is not None and content_text(resource) is None


def _external_resources(
    annotation_json: Mapping[str, object],
) -> Iterator[tuple[Mapping[str, object], Mapping[str, object]]]:
    # Painting bodies are the canvas image, never text.
    for annotation in annotation_items(annotation_json):
        if "painting" in motivations(annotation):
            continue
        resource = annotation_body(annotation)
        if resource is not None and is_external(resource):
            yield annotation, resource


def external_resource_ids(annotation_json: Mapping[str, object]) -> list[str]:
    """Distinct fragment-less identifiers of external resources, in order."""
    seen: dict[str, None] = {}
    for _, resource in _external_resources(annotation_json):
        base, _ = split_char_fragment(resource_id(resource) or "")
        if base:
            seen.setdefault(base, None)
    return list(seen)


def fetch_annotation_resource(fetcher: Fetcher, uri: str) -> Mapping[str, object]:
    """Fetch an external content resource as a resource object.

    JSON objects are used as-is; any other body becomes `{"@id", "value"}`.
    """
    try:
        text = fetcher.fetch_text(uri)
    except TextOverlayError as exc:
        raise UnresolvableReference(uri, str(exc)) from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return {"@id": uri, "value": text}
    if isinstance(payload, Mapping):
        return payload
    return {"@id": uri, "value": text}


def _resolved_resource(
    resource: Mapping[str, object],
    fetched: Mapping[str, object],
) -> dict[str, object]:
    identifier = resource_id(resource) or ""
    _, char_range = split_char_fragment(identifier)
    if char_range is None:
        return {**resource, **fetched}
    text = content_text(fetched)
    if text is None:
        raise UnresolvableReference(identifier, "fetched resource has no text value")
    return {**resource, "value": slice_chars(text, char_range)}


def resolve_resources(
    annotation_json: Mapping[str, object],
    fetcher: Fetcher,
    *,
    executor: Executor | None = None,
) -> dict[str, object]:
    """Inline the content of every external text resource.

    Each distinct identifier is fetched once per call, however many resources
    point at it. A `#char=start,length` fragment narrows the fetched text to
    that range. Resources that cannot be resolved are left as they were.

    Args:
        annotation_json: IIIF annotation list or page; never mutated.
        fetcher: Fetch collaborator used for the external identifiers.
        executor: Optional executor for fetching identifiers concurrently.
    Returns:
        A copy of `annotation_json` with resolved resources.
    """
    resolved = copy.deepcopy(dict(annotation_json))
    identifiers = external_resource_ids(resolved)
    if not identifiers:
        return resolved

    fetched: dict[str, Mapping[str, object] | UnresolvableReference] = {}

    def _fetch(uri: str) -> Mapping[str, object] | UnresolvableReference:
        try:
            return fetch_annotation_resource(fetcher, uri)
        except UnresolvableReference as exc:
            return exc

    if executor is not None:
        fetched = dict(zip(identifiers, executor.map(_fetch, identifiers)))
    elif len(identifiers) == 1:
        fetched = {identifiers[0]: _fetch(identifiers[0])}
    else:
        workers = min(_MAX_RESOLVE_WORKERS, len(identifiers))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            fetched = dict(zip(identifiers, pool.map(_fetch, identifiers)))

    for annotation, resource in list(_external_resources(resolved)):
        identifier = resource_id(resource) or ""
        base, _ = split_char_fragment(identifier)
        result = fetched.get(base)
        if not isinstance(result, Mapping):
            logger.warning("Leaving annotation resource unresolved: %s", result)
            continue
        try:
            replacement = _resolved_resource(resource, result)
        except UnresolvableReference as exc:
            logger.warning("Leaving annotation resource unresolved: %s", exc)
            continue
        _replace_body(annotation, resource, replacement)
    return resolved


def _replace_body(
    annotation: Mapping[str, object],
    resource: Mapping[str, object],
    replacement: dict[str, object],
) -> None:
    if not isinstance(annotation, dict):
        return
    key = body_key(annotation)
    body = annotation.get(key)
    if isinstance(body, list):
        annotation[key] = [replacement if item is resource else item for item in body]
    else:
        annotation[key] = replacement
