"""
interfaces/cli.py
──────────────────────────────────────────────────────────────────────────────
Command-line interface for StatCoder.

Usage:
  # Code a CSV of job titles against ISCO-08, write results to a new CSV
  statcoder code --input jobs.csv --module isco --primary "Job Title" \
      --secondary "Duties" --output coded.csv

  # Dual coding (occupation + industry) with an industry column
  statcoder code -i survey.xlsx -m dual --primary title --tertiary employer_activity

  # Maintain the local dictionary (col 1 = code, col 2 = label, col 3 = term)
  statcoder dictionary import --module isco isco_dictionary.csv
  statcoder dictionary stats
  statcoder dictionary clear --module coicop

  # Manual-coding helpers
  statcoder search  --module isic "bakery"
  statcoder suggest --module isco "nurs"

  # Equivalent module invocation
  python -m statcoder.interfaces.cli dictionary stats

Exit codes:
  0 : success
  1 : fatal error (auth, DB, etc.) or at least one row failed
  2 : argument error
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from statcoder.domain.exceptions import StatCoderError
from statcoder.domain.models import BatchProgress, CodingStatus, ColumnMapping, ModuleType
from statcoder.services.container import (
    build_orchestrator,
    get_classifier,
    get_reference_store,
)
from statcoder.services.tabular import read_records, write_records

logger = logging.getLogger(__name__)

MODULE_CHOICES: dict[str, ModuleType] = {
    "isco": ModuleType.ISCO08,
    "isic": ModuleType.ISIC4,
    "coicop": ModuleType.COICOP,
    "dual": ModuleType.DUAL,
}


# ── Argument parser ────────────────────────────────────────────────────────

def _add_module_arg(p: argparse.ArgumentParser, required: bool = True) -> None:
    p.add_argument(
        "--module", "-m",
        choices=sorted(MODULE_CHOICES),
        required=required,
        help="Classification module.",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="statcoder",
        description="Code free-text records into ISCO-08 / ISIC Rev. 4 / COICOP 2018.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    sub = p.add_subparsers(dest="command")

    code = sub.add_parser("code", help="Code a batch file.")
    code.add_argument("--input", "-i", type=Path, required=True, metavar="FILE",
                      help="CSV / XLSX / XLS / ODS input file.")
    _add_module_arg(code)
    code.add_argument("--primary", required=True, metavar="COL",
                      help="Column holding the text to code.")
    code.add_argument("--secondary", metavar="COL",
                      help="Optional context column (description, details).")
    code.add_argument("--tertiary", metavar="COL",
                      help="Optional industry column for dual coding.")
    code.add_argument("--id", dest="id_column", metavar="COL",
                      help="Optional column holding a stable row id.")
    code.add_argument("--output", "-o", type=Path, metavar="FILE",
                      help="Write coded rows to this CSV file.")
    code.add_argument("--json", action="store_true", dest="json_output",
                      help="Print coded rows as JSON.")

    dictionary = sub.add_parser("dictionary", help="Manage the local reference dictionary.")
    dict_sub = dictionary.add_subparsers(dest="dict_command")
    imp = dict_sub.add_parser("import", help="Import a dictionary file.")
    _add_module_arg(imp)
    imp.add_argument("file", type=Path, metavar="FILE")
    dict_sub.add_parser("stats", help="Show entry counts per module.")
    clr = dict_sub.add_parser("clear", help="Delete dictionary entries.")
    _add_module_arg(clr, required=False)

    for name, help_text in (("search", "Search codes for a query."),
                            ("suggest", "Autocomplete codes for partial input.")):
        helper = sub.add_parser(name, help=help_text)
        _add_module_arg(helper)
        helper.add_argument("query", metavar="TEXT")

    return p


# ── Formatting helpers ─────────────────────────────────────────────────────

def _print_progress(progress: BatchProgress) -> None:
    print(f"\rProcessed {progress.completed} of {progress.total} rows", end="", file=sys.stderr)


def _print_rows_text(rows) -> None:
    """Pretty-print coded rows to stdout."""
    print(f"\n{'─' * 60}")
    for r in rows:
        if r.result:
            print(f"  [{r.result.code}] {r.result.label}  ({r.result.confidence.value})  ← {r.primary_text}")
            if r.result.reasoning:
                print(f"       Reason: {r.result.reasoning}")
        else:
            print(f"  [ERROR] {r.primary_text}: {r.error_message}")
    print()


# ── Commands ───────────────────────────────────────────────────────────────

def _cmd_code(args: argparse.Namespace) -> int:
    records = read_records(args.input)
    if not records:
        print(f"ERROR: no records in {args.input}", file=sys.stderr)
        return 2

    orchestrator = build_orchestrator(on_progress=_print_progress)
    orchestrator.load(records)
    orchestrator.initialize(
        ColumnMapping(
            primary_column=args.primary,
            secondary_column=args.secondary,
            tertiary_column=args.tertiary,
            id_column=args.id_column,
        ),
        MODULE_CHOICES[args.module],
    )
    asyncio.run(orchestrator.run())
    print(file=sys.stderr)

    rows = orchestrator.rows
    if args.output:
        write_records(orchestrator.export_records(), args.output)
    if args.json_output:
        print(json.dumps(
            [r.model_dump(mode="json") for r in rows], indent=2, ensure_ascii=False
        ))
    elif not args.output:
        _print_rows_text(rows)

    errors = sum(1 for r in rows if r.coding_status == CodingStatus.ERROR)
    print(f"Coded {len(rows) - errors} of {len(rows)} rows ({errors} errors)", file=sys.stderr)
    return 1 if errors else 0


def _cmd_dictionary(args: argparse.Namespace) -> int:
    store = get_reference_store()
    if args.dict_command == "import":
        module = MODULE_CHOICES[args.module]
        entries = store.import_records(read_records(args.file), module)
        print(f"Imported {len(entries)} entries into {module.value}")
    elif args.dict_command == "stats":
        for module, count in store.stats().items():
            print(f"  {module.value:<28} {count:>8}")
    elif args.dict_command == "clear":
        module = MODULE_CHOICES[args.module] if args.module else None
        store.clear(module)
        print(f"Cleared {module.value if module else 'all modules'}")
    else:
        print("ERROR: choose import, stats or clear", file=sys.stderr)
        return 2
    return 0


def _cmd_helper(args: argparse.Namespace) -> int:
    classifier = get_classifier()
    module = MODULE_CHOICES[args.module]
    if args.command == "search":
        items = classifier.search(args.query, module)
    else:
        items = classifier.suggest(args.query, module)
    for item in items:
        print(f"  [{item.code}] {item.label}")
    return 0


def run(args: argparse.Namespace) -> int:
    """Execute the selected sub-command.

    Returns:
        Exit code (0 = success, 1 = error, 2 = usage).
    """
    handlers = {
        "code": _cmd_code,
        "dictionary": _cmd_dictionary,
        "search": _cmd_helper,
        "suggest": _cmd_helper,
    }
    try:
        return handlers[args.command](args)
    except StatCoderError as exc:
        logger.exception("Command %s failed", args.command)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


def main() -> None:
    """Entry point for the statcoder console script."""
    parser = _build_parser()
    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(2)

    sys.exit(run(args))


if __name__ == "__main__":
    main()
