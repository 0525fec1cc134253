import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from canvas_text_overlay.errors import TextOverlayError
from canvas_text_overlay.fetch import DEFAULT_TIMEOUT_S, FetchSettings, HttpFetcher
from canvas_text_overlay.formats import parse_text
from canvas_text_overlay.models import CanvasSize
from canvas_text_overlay.orchestrator import TextOverlayOrchestrator
from canvas_text_overlay.store import CanvasTextEntry, TextStore
from canvas_text_overlay.viewer import StaticViewerState

logger = logging.getLogger(__name__)

_CLI_CANVAS_ID = "cli-canvas"


def _entry_payload(entry: CanvasTextEntry | None) -> dict[str, object]:
    if entry is None:
        return {"status": "not_requested"}
    return {
        "target_id": entry.target_id,
        "status": entry.status,
        "source": entry.source_uri,
        "source_type": entry.source_type,
        "error": entry.error,
        "text": entry.parsed_text.model_dump() if entry.parsed_text else None,
    }


def _add_canvas_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--width", type=float, required=True, help="Canvas width (px)")
    parser.add_argument(
        "--height", type=float, required=True, help="Canvas height (px)"
    )


def _add_fetch_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT_S, help="Request timeout (s)"
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Disable TLS certificate verification",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvas-text-overlay",
        description="Fetch and normalize OCR or annotation text for a canvas.",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    parse_cmd = sub.add_parser("parse", help="Parse a local ALTO or hOCR file")
    parse_cmd.add_argument("path", type=Path)
    parse_cmd.add_argument("--media-type", default=None)
    _add_canvas_args(parse_cmd)

    fetch_cmd = sub.add_parser("fetch", help="Fetch and parse OCR markup")
    fetch_cmd.add_argument("uri")
    fetch_cmd.add_argument("--media-type", default=None)
    _add_canvas_args(fetch_cmd)
    _add_fetch_args(fetch_cmd)

    annos_cmd = sub.add_parser(
        "annotations", help="Fetch an annotation list and resolve its text"
    )
    annos_cmd.add_argument("uri")
    _add_canvas_args(annos_cmd)
    _add_fetch_args(annos_cmd)
    return parser


def _run_parse(args: argparse.Namespace) -> int:
    canvas = CanvasSize(width=args.width, height=args.height)
    try:
        parsed = parse_text(
            args.path.read_bytes(), canvas, media_type=args.media_type
        )
    except TextOverlayError as exc:
        logger.error("%s", exc)
        return 1
    print(json.dumps(parsed.model_dump(), indent=2, ensure_ascii=False))
    return 0


def _run_remote(args: argparse.Namespace) -> int:
    canvas = CanvasSize(width=args.width, height=args.height)
    fetcher = HttpFetcher(FetchSettings(timeout_s=args.timeout, insecure=args.insecure))
    store = TextStore()
    orchestrator = TextOverlayOrchestrator(store, StaticViewerState(), fetcher)
    try:
        with orchestrator:
            if args.command == "fetch":
                orchestrator.fetch_and_parse(
                    _CLI_CANVAS_ID, args.uri, canvas, media_type=args.media_type
                )
            else:
                orchestrator.fetch_annotations(_CLI_CANVAS_ID, args.uri, canvas)
    finally:
        fetcher.close()
    entry = store.get(_CLI_CANVAS_ID)
    print(json.dumps(_entry_payload(entry), indent=2, ensure_ascii=False))
    return 0 if entry is not None and entry.status == "fetched" else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.command == "parse":
        return _run_parse(args)
    return _run_remote(args)


if __name__ == "__main__":
    raise SystemExit(main())
