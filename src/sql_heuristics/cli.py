"""Command line front end: rewrite one query and print the result."""

import argparse
import json
import logging
import sys
import warnings
from pathlib import Path
from typing import Optional, Sequence

from .catalog import Catalog
from .config import RewriterConfig
from .dialects import Dialect
from .errors import DialectUnsupportedFeatureError, MalformedQueryError, NonConvergenceWarning
from .rewriter import QueryRewriter


def _load_query(arg: Optional[str], file_arg: Optional[str]) -> str:
    if file_arg:
        return Path(file_arg).read_text()
    if arg:
        return arg
    if not sys.stdin.isatty():
        return sys.stdin.read()
    raise SystemExit("Provide a query argument, --file, or SQL on stdin.")


def _load_catalog(path: Optional[str], dialect: Dialect) -> Optional[Catalog]:
    if not path:
        return None
    text = Path(path).read_text()
    if path.endswith(".json") or text.lstrip().startswith("{"):
        return Catalog.from_json(text, dialect=dialect)
    return Catalog.from_ddl(text, dialect=dialect)


def _build_config(args: argparse.Namespace) -> RewriterConfig:
    values = {}
    if args.config:
        values.update(json.loads(Path(args.config).read_text()))
    overrides = {
        "source_dialect": args.source,
        "target_dialect": args.target,
        "max_iterations": args.max_iterations,
        "rules": args.rules,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    for flag, key in ((args.skip_internal, "skip_internally_optimized"), (args.pretty, "pretty"), (args.identify, "identify")):
        if flag:
            values[key] = True
    return RewriterConfig.from_dict(values)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Rewrite a SQL query with heuristics H1-H8 and print the result."
    )
    parser.add_argument("query", nargs="?", help="Query SQL string (default: read from stdin)")
    parser.add_argument("--file", help="Path to file containing the query")
    dialects = [d.value for d in Dialect]
    parser.add_argument("--source", choices=dialects, help="Dialect of the input (default: postgres)")
    parser.add_argument("--target", choices=dialects, help="Dialect of the output (default: same as --source)")
    parser.add_argument("--catalog", help="Schema catalog: a JSON file or a file of CREATE TABLE statements")
    parser.add_argument("--config", help="JSON file with RewriterConfig fields")
    parser.add_argument("--max-iterations", type=int, help="Cap on rewrite passes (default: 10)")
    parser.add_argument("--rules", help="Comma-separated rule ids in priority order, e.g. H4,H8")
    parser.add_argument(
        "--skip-internal",
        action="store_true",
        help="Skip rules the target engine already applies internally",
    )
    parser.add_argument("--pretty", action="store_true", help="Format the output over multiple lines")
    parser.add_argument("--identify", action="store_true", help="Quote every identifier")
    parser.add_argument(
        "--report",
        choices=("none", "text", "json"),
        default="text",
        help="Rewrite report printed to stderr (default: text)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = _build_config(args)
        catalog = _load_catalog(args.catalog, config.source_dialect)
        query = _load_query(args.query, args.file)
    except (OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    rewriter = QueryRewriter(catalog=catalog, config=config)
    try:
        with warnings.catch_warnings():
            # Non-convergence is already part of the report.
            warnings.simplefilter("ignore", NonConvergenceWarning)
            outcome = rewriter.rewrite_sql(query)
    except MalformedQueryError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except DialectUnsupportedFeatureError as e:
        print(f"error: {e}", file=sys.stderr)
        return 3

    print(outcome.sql)
    if args.report == "text":
        print(outcome.report.summary(config.target_dialect), file=sys.stderr)
    elif args.report == "json":
        print(json.dumps(outcome.report.to_dict(config.target_dialect), indent=2), file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
