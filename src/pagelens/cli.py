# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageLens CLI.

Usage:
    pagelens structure --url https://example.com
    pagelens structure --html-file page.html
    pagelens analyze merged-structure --url https://example.com --debug
    pagelens analyze screenshot --url https://example.com -o shot.jpg
    pagelens clear-cache --prefix structure:
    pagelens serve --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from .analyzer import Analyzer, OperationResult
from .config import Settings
from .dom_extractor import extract_structure
from .params import OUTPUT_MODES, AnalyzeParams


def _print_json(value: Any) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2))


def _write_result(result: OperationResult, output: str | None) -> None:
    """JSON/text to stdout (or *output*); image bytes require *output*."""
    body = result.body
    if isinstance(body, bytes):
        if not output:
            print("Error: binary output needs -o/--output PATH.", file=sys.stderr)
            sys.exit(1)
        Path(output).write_bytes(body)
        print(f"Wrote {len(body)} bytes ({result.media_type}) to {output}", file=sys.stderr)
        return
    text = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False, indent=2)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        print(f"Wrote {output}", file=sys.stderr)
    else:
        print(text)


def _fail(exc: BaseException, verbose: bool = False) -> None:
    from .problem_details import from_exception

    print(from_exception(exc).to_cli_text(), file=sys.stderr)
    if verbose:
        import traceback

        traceback.print_exc(file=sys.stderr)
    sys.exit(1)


def cmd_structure(args: argparse.Namespace) -> None:
    """Markup structure of a live URL or a saved HTML file."""
    if args.html_file:
        path = Path(args.html_file)
        if not path.is_file():
            print(f"Error: file not found: {path}", file=sys.stderr)
            sys.exit(1)
        structure = extract_structure(path.read_text(encoding="utf-8", errors="replace"), args.url or "")
        _print_json(structure.to_dict())
        return

    if not args.url:
        print(
            "Error: --url or --html-file is required for the structure command.\n\n"
            "Examples:\n"
            "  pagelens structure --url https://example.com\n"
            "  pagelens structure --html-file saved.html\n",
            file=sys.stderr,
        )
        sys.exit(1)
    _run_analyze({"output": "structure", "target": args.url}, None, args)


def _analyze_mapping(args: argparse.Namespace) -> dict[str, Any]:
    raw: dict[str, Any] = {"output": args.output_mode}
    if args.url:
        raw["target"] = args.url
    if args.viewport:
        try:
            width, height = (int(v) for v in args.viewport.lower().split("x", 1))
        except ValueError:
            print(f"Error: --viewport must look like 1280x1000, got {args.viewport!r}", file=sys.stderr)
            sys.exit(1)
        raw["viewportWidth"] = width
        raw["viewportHeight"] = height
    if args.full_page:
        raw["fullPage"] = True
    if args.image_type:
        raw["imageType"] = args.image_type
    if args.quality is not None:
        raw["imageQuality"] = args.quality
    if args.wait_ms is not None:
        raw["waitMs"] = args.wait_ms
    if args.selector:
        raw["selectorToWaitFor"] = args.selector
    if args.model:
        raw["model"] = args.model
    if args.format:
        raw["format"] = args.format
    if args.prompt:
        raw["prompt"] = args.prompt
    if args.include_screenshot:
        raw["includeScreenshot"] = True
    if args.debug:
        raw["debug"] = True
    if args.image:
        import base64
        import mimetypes

        path = Path(args.image)
        raw["imageBase64"] = base64.b64encode(path.read_bytes()).decode("ascii")
        raw["imageMime"] = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return raw


async def _analyze(raw: dict[str, Any], settings: Settings) -> OperationResult:
    analyzer = Analyzer.from_settings(settings)
    try:
        params = AnalyzeParams.from_mapping(raw, default_model=analyzer.default_model)
        return await analyzer.run(params)
    finally:
        await analyzer.aclose()


def _run_analyze(raw: dict[str, Any], output: str | None, args: argparse.Namespace) -> None:
    # One-shot process: nothing to share a cache with.
    settings = Settings.from_env()
    try:
        result = asyncio.run(_analyze(raw, settings))
    except KeyboardInterrupt:
        raise
    except Exception as e:
        _fail(e, getattr(args, "verbose", False))
        return
    _write_result(result, output)


def cmd_analyze(args: argparse.Namespace) -> None:
    """Run any output mode once, the way /analyze would."""
    _run_analyze(_analyze_mapping(args), args.output, args)


def cmd_clear_cache(args: argparse.Namespace) -> None:
    """Drop cached results against a running server's cache."""
    import httpx

    base = args.server.rstrip("/")
    try:
        resp = httpx.post(f"{base}/analyze", json={"output": "clear-cache", "prefix": args.prefix}, timeout=30)
    except httpx.HTTPError as e:
        print(f"Error: could not reach {base}: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        body = resp.json()
    except ValueError:
        body = {"raw": resp.text}
    if resp.status_code >= 400:
        print(f"Error: {body.get('detail') or body}", file=sys.stderr)
        sys.exit(1)
    _print_json(body)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the HTTP server, forwarding any extra args to it."""
    from .server import main

    main(argv=getattr(args, "_server_argv", []))


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="PageLens CLI", prog="pagelens")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_structure = subparsers.add_parser("structure", help="Print the markup-derived structure as JSON")
    p_structure.add_argument("--url", type=str, metavar="URL", help="Page to render (or source URL for --html-file)")
    p_structure.add_argument("--html-file", type=str, metavar="PATH", help="Parse saved HTML instead of rendering")

    _analyze_epilog = """\
examples:
  %(prog)s structure --url https://example.com
  %(prog)s screenshot --url https://example.com --full-page -o shot.jpg
  %(prog)s ai --url https://example.com --prompt "Describe the hero"
  %(prog)s ai-describe --image shot.jpg
  %(prog)s merged-structure --url https://example.com --debug
"""
    p_analyze = subparsers.add_parser(
        "analyze",
        help="Run one output mode (html, structure, screenshot, ai, merged-structure, ...)",
        epilog=_analyze_epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_analyze.add_argument(
        "output_mode",
        choices=[m for m in OUTPUT_MODES if m != "clear-cache"],
        metavar="OUTPUT",
        help="Output mode",
    )
    p_analyze.add_argument("--url", type=str, metavar="URL", help="Target URL")
    p_analyze.add_argument("--viewport", type=str, metavar="WxH", help="Viewport size, e.g. 1280x1000")
    p_analyze.add_argument("--full-page", action="store_true", help="Capture the full scrollable page")
    p_analyze.add_argument("--image-type", choices=["jpeg", "png"], help="Screenshot format")
    p_analyze.add_argument("--quality", type=int, metavar="N", help="JPEG quality (1-100)")
    p_analyze.add_argument("--wait-ms", type=int, metavar="MS", help="Settle time before capture")
    p_analyze.add_argument("--selector", type=str, metavar="CSS", help="Wait for this selector before capture")
    p_analyze.add_argument("--model", type=str, help="AI model name")
    p_analyze.add_argument("--format", type=str, choices=["json", "text"], help="AI response format")
    p_analyze.add_argument("--prompt", type=str, help="Prompt override")
    p_analyze.add_argument("--image", type=str, metavar="PATH", help="Image file for ai-describe")
    p_analyze.add_argument("--include-screenshot", action="store_true", help="Attach the screenshot to AI results")
    p_analyze.add_argument("--debug", action="store_true", help="Include DOM and vision structures")
    p_analyze.add_argument("-o", "--output", type=str, metavar="PATH", help="Write the result to a file")

    p_clear = subparsers.add_parser("clear-cache", help="Clear a running server's cache by key prefix")
    p_clear.add_argument("--prefix", type=str, default="", help="Key prefix, e.g. 'structure:' (default: all)")
    p_clear.add_argument("--server", type=str, default="http://127.0.0.1:8000", help="Server base URL")

    subparsers.add_parser("serve", help="Start the HTTP server (extra args forwarded to the server)", add_help=False)

    commands = {
        "structure": cmd_structure,
        "analyze": cmd_analyze,
        "clear-cache": cmd_clear_cache,
        "serve": cmd_serve,
    }

    args, remaining = parser.parse_known_args()
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    from .logging_config import configure as configure_logging

    configure_logging(json_output=False, level="DEBUG" if args.verbose else "INFO")

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        _fail(e, args.verbose)


if __name__ == "__main__":
    main()
