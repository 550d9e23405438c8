"""Command line entry point."""

import argparse
import os
import sys

from apps2compose.core.convert import convert_dir
from apps2compose.core.errors import PipelineError
from apps2compose.core.extensions import select_compiler


def emit_warnings(warnings: list[str], errors: list[str] | None = None) -> None:
    """Print collected per-app errors and warnings to stderr."""
    for e in errors or []:
        print(f"✗ {e}", file=sys.stderr)
    for w in warnings:
        print(f"⚠ {w}", file=sys.stderr)


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Convert an app catalog to compose specs, port/IP maps, "
                    "Tor/I2P entries and a Caddyfile"
    )
    parser.add_argument(
        "--root", default=".",
        help="Platform root containing apps/, db/, templates/ (default: .)",
    )
    parser.add_argument(
        "--caddy-url",
        help="Caddy admin URL; the generated config is POSTed to <url>/load",
    )
    parser.add_argument(
        "--extensions-dir",
        help="Directory containing spec compiler extensions",
    )
    args = parser.parse_args(argv)

    if args.extensions_dir and not os.path.isdir(args.extensions_dir):
        print(f"Extensions directory not found: {args.extensions_dir}", file=sys.stderr)
        sys.exit(1)
    compiler = select_compiler(args.extensions_dir)

    try:
        ctx = convert_dir(args.root, caddy_url=args.caddy_url, compiler=compiler)
    except PipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    emit_warnings(ctx.warnings, ctx.errors)


if __name__ == "__main__":
    main()
