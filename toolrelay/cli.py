#!/usr/bin/env python3
"""
Command line tools for inspecting tool-call extraction and the tool catalog.
"""

import argparse
import json
import sys
from dataclasses import asdict
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Import after loading env vars to ensure proper configuration
from .domain.services.token_classifier import TokenClassifier
from .domain.services.tool_instructions import ToolInstructionExtractor
from .infrastructure.config.settings import get_settings
from .infrastructure.mcp.catalog_cache import ToolCatalogCache
from .utils import setup_logging, split_chunks


def _read_text(value):
    if value is not None and value != "-":
        return value
    return sys.stdin.read()


def cmd_extract(args) -> int:
    """Print cleaned text and the recovered request."""
    result = ToolInstructionExtractor().extract(_read_text(args.text))
    request = result.request
    print(json.dumps({
        "cleaned_text": result.cleaned_text,
        "request": None if request is None else {
            "server": request.server,
            "tool": request.tool,
            "args": request.args,
            "card_id": request.card_id,
        },
    }, ensure_ascii=False, indent=2))
    return 0 if request is not None else 1


def cmd_classify(args) -> int:
    """Feed stdin through the classifier in small chunks and print each event."""
    classifier = TokenClassifier.for_model(args.model)
    events = []
    for chunk in split_chunks(_read_text(args.text), args.chunk_size):
        events.extend(classifier.feed(content=chunk))
    events.extend(classifier.feed(done=True))
    for event in events:
        print(json.dumps(asdict(event), ensure_ascii=False))
    return 0


class _NoTransport:
    """Catalog inspection never reaches a server."""

    async def list_tools(self, name):
        raise RuntimeError("no tool transport in the CLI")


def cmd_catalog(args) -> int:
    """Show or clear the persisted tool catalog."""
    settings = get_settings()
    catalog = ToolCatalogCache(_NoTransport(), path=args.path or settings.catalog.path, ttl_s=settings.catalog.ttl_s)
    if args.action == "clear":
        catalog.invalidate(args.server)
        print(f"Cleared {'catalog for ' + args.server if args.server else 'tool catalog'}")
        return 0
    print(json.dumps(catalog.stats(), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="toolrelay",
        description="Inspect tool-call extraction, streaming classification and the tool catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s extract '<tool_call>{"server":"fs","tool":"read","parameters":{}}</tool_call>'
  echo '<think>hmm</think>Hi' | %(prog)s classify --model deepseek-r1
  %(prog)s catalog stats
        """
    )
    parser.add_argument('--log-level',
                        default=None,
                        help='Logging level (default: LOG_LEVEL or INFO)')
    sub = parser.add_subparsers(dest='command', required=True)

    extract = sub.add_parser('extract', help='Extract a tool call from text')
    extract.add_argument('text', nargs='?', help="Text to parse (default: stdin)")
    extract.set_defaults(func=cmd_extract)

    classify = sub.add_parser('classify', help='Classify a simulated token stream')
    classify.add_argument('text', nargs='?', help="Stream text (default: stdin)")
    classify.add_argument('--model', default=None, help='Model name used to pick a thinking strategy')
    classify.add_argument('--chunk-size', type=int, default=8, help='Characters per simulated token')
    classify.set_defaults(func=cmd_classify)

    catalog = sub.add_parser('catalog', help='Inspect the persisted tool catalog')
    catalog.add_argument('action', choices=['stats', 'clear'])
    catalog.add_argument('--server', default=None, help='Limit clear to one server')
    catalog.add_argument('--path', default=None, help='Catalog file (default: TOOL_CATALOG_PATH)')
    catalog.set_defaults(func=cmd_catalog)
    return parser


def main(argv=None) -> int:
    """Main entry point for the toolrelay CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level, settings.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
