"""
Command-line interface for entgen.

Commands:
- compile: Print the generation plan JSON, or the diagnostics
- check: Print diagnostics only
- fingerprint: Print the plan fingerprint

Usage:
    entgen compile schema.yaml --layer storage > storage.plan.json
    entgen check schema.yaml
    entgen fingerprint schema.yaml

Invariants:
    - Any diagnostic causes exit code 1 and no plan output
    - Plan JSON is deterministic (sorted keys)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

import json_log_formatter

from .compiler import LAYERS, CompilationResult, compile_schema
from .config import Settings, get_settings
from .schema.loader import SchemaLoadError, load_schema

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure the root logger from settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class CompilerCLI:
    """CLI commands over a compiled schema.

    Example:
        >>> cli = CompilerCLI()
        >>> code, output = cli.compile("blog.yaml")
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def _compile(self, path: str) -> CompilationResult:
        return compile_schema(load_schema(path), self.settings)

    def compile(self, path: str, layer: str = "all") -> tuple[int, str]:
        """Compile and render the plan (or diagnostics) as JSON.

        Returns:
            Tuple of (exit code, output text)
        """
        result = self._compile(path)
        if not result.ok:
            return 1, self.format_diagnostics(result)

        plans = result.plans_dict()
        if layer != "all":
            plans = {layer: plans[layer]}
        output = {
            "version": 1,
            "fingerprint": result.fingerprint,
            "plans": plans,
        }
        return 0, json.dumps(output, indent=2, sort_keys=True)

    def check(self, path: str) -> tuple[int, str]:
        result = self._compile(path)
        if result.ok:
            return 0, "Schema compiled without errors"
        return 1, self.format_diagnostics(result)

    def fingerprint(self, path: str) -> tuple[int, str]:
        result = self._compile(path)
        if not result.ok:
            return 1, self.format_diagnostics(result)
        return 0, result.fingerprint or ""

    @staticmethod
    def format_diagnostics(result: CompilationResult) -> str:
        lines = [f"Compilation failed with {len(result.diagnostics)} error(s):"]
        lines += [f"  - {d}" for d in result.diagnostics]
        return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="entgen", description="entgen schema compiler")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Print the generation plan")
    compile_parser.add_argument("schema", help="Schema document (YAML or JSON)")
    compile_parser.add_argument(
        "--layer", choices=("all",) + LAYERS, default="all", help="Plan layer to print"
    )
    compile_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    check_parser = subparsers.add_parser("check", help="Report diagnostics only")
    check_parser.add_argument("schema", help="Schema document (YAML or JSON)")

    fingerprint_parser = subparsers.add_parser("fingerprint", help="Print the plan fingerprint")
    fingerprint_parser.add_argument("schema", help="Schema document (YAML or JSON)")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)
    cli = CompilerCLI(settings)

    try:
        if args.command == "compile":
            code, output = cli.compile(args.schema, args.layer)
        elif args.command == "check":
            code, output = cli.check(args.schema)
        else:
            code, output = cli.fingerprint(args.schema)
    except (OSError, SchemaLoadError) as e:
        print(f"Cannot load schema: {e}", file=sys.stderr)
        return 2

    if args.command == "compile" and args.output and code == 0:
        with open(args.output, "w") as f:
            f.write(output)
        print(f"Plan written to {args.output}", file=sys.stderr)
    else:
        print(output)
    return code


if __name__ == "__main__":
    sys.exit(main())
