#!/usr/bin/env python3
"""
SketchDB - Main Program
Converts SQL CREATE TABLE statements to diagram JSON (and back to normalized SQL)
"""
import argparse
import json
import sys
from pathlib import Path

from sketchdb.src import Diagram, generate_sql, parse_sql_with_warnings
from sketchdb.src.sql_generator import DIALECTS
from sketchdb.src.exceptions import SchemaValidationError, SQLGenerationError


def sql_to_diagram(sql_content: str):
    """
    Convert SQL to a diagram

    Args:
        sql_content: SQL string containing CREATE TABLE statements

    Returns:
        (Diagram, warnings)
    """
    tables, warnings = parse_sql_with_warnings(sql_content)
    return Diagram(tables), warnings


def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Convert SQL CREATE TABLE statements to SketchDB diagram JSON"
    )
    parser.add_argument(
        "input",
        help="SQL file path or '-' for stdin"
    )
    parser.add_argument(
        "-o", "--output",
        help="Write diagram JSON to this file instead of stdout"
    )
    parser.add_argument(
        "--sql",
        action="store_true",
        help="Print the normalized CREATE TABLE statements instead of JSON"
    )
    parser.add_argument(
        "--dialect",
        choices=DIALECTS,
        help="Adapt the --sql output to this database"
    )

    args = parser.parse_args(argv)

    # Read SQL content
    if args.input == "-":
        sql_content = sys.stdin.read()
    else:
        input_path = Path(args.input)
        if not input_path.exists():
            print(f"Error: File not found: {args.input}", file=sys.stderr)
            return 1
        sql_content = input_path.read_text(encoding="utf-8")

    diagram, warnings = sql_to_diagram(sql_content)
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)

    if args.sql:
        try:
            output = generate_sql(diagram.tables, args.dialect)
        except (SchemaValidationError, SQLGenerationError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        output = json.dumps(diagram.to_dict(), indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(output + "\n", encoding="utf-8")
        print(f"Wrote {len(diagram.tables)} table(s) to {args.output}", file=sys.stderr)
    else:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
