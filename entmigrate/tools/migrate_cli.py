"""
Migration CLI tool for entmigrate.

Commands:
- plan: Show the operations needed to reach the schema
- sql: Print the statements a migration would execute (dry run)
- apply: Migrate the database
- inspect: Show the live tables

Usage:
    entmigrate --url sqlite:///app.db plan --schema schema.yaml
    entmigrate --url sqlite:///app.db plan --schema schema.yaml --check
    entmigrate --url mysql+pymysql://u:p@host/db apply --schema schema.yaml --global-unique-id
    entmigrate --url postgresql://u:p@host/db inspect --format json

Invariants:
    - Any error exits non-zero with a one-line message on stderr
    - `plan --check` exits 1 when the plan is not empty
    - Logs go to stderr; command output goes to stdout

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import List, Optional

import json_log_formatter
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from ..config import ObservabilityConfig, ToolConfig
from ..errors import EntMigrateError
from ..migrate import Migrator
from ..schema import SchemaRegistry, load_schema

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Logging configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


class MigrateCLI:
    """CLI tool for schema migration.

    Example:
        >>> cli = MigrateCLI(ToolConfig())
        >>> print(cli.plan(load_schema("schema.yaml")).report())
    """

    def __init__(self, config: ToolConfig) -> None:
        self.config = config
        self.engine = create_engine(config.database.url, echo=config.database.echo)
        self.migrator = Migrator(self.engine, config.migrate)

    def close(self) -> None:
        self.engine.dispose()

    def plan(self, registry: SchemaRegistry):
        return self.migrator.plan(registry)

    def sql(self, registry: SchemaRegistry) -> str:
        """Statements of a dry run, one per line."""
        return "\n".join(f"{statement};" for statement in self.migrator.sql(registry))

    def apply(self, registry: SchemaRegistry) -> str:
        result = self.migrator.migrate(registry)
        lines = [result.plan.report()]
        lines.append(
            f"Applied {result.applied} operation(s) in {result.duration_seconds:.2f}s"
            + (" (verified)" if result.verified else "")
        )
        for block in result.blocks.values():
            lines.append(f"  {block.table}: tag {block.tag}, ids {block.start + 1}..{block.end - 1}")
        return "\n".join(lines)

    def inspect(self, output_format: str = "text") -> str:
        tables = self.migrator.inspect()
        if output_format == "json":
            return json.dumps(
                {name: table.to_dict() for name, table in sorted(tables.items())},
                indent=2,
                sort_keys=True,
            )
        if not tables:
            return "No tables"
        return "\n\n".join(tables[name].describe() for name in sorted(tables))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="entmigrate", description="entmigrate schema migration tool")
    parser.add_argument("--url", help="Database URL (default: $ENTMIGRATE_DATABASE_URL)")
    parser.add_argument("--log-level", help="Logging level (default: $LOG_LEVEL)")
    parser.add_argument("--log-format", choices=["text", "json"], help="Log format (default: $LOG_FORMAT)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    toggles = argparse.ArgumentParser(add_help=False)
    toggles.add_argument("--schema", "-s", required=True, help="Schema file (YAML or JSON)")
    toggles.add_argument("--global-unique-id", action="store_true", default=None,
                         help="Tag identifiers with a per-table block")
    toggles.add_argument("--drop-column", action="store_true", default=None,
                         help="Drop columns absent from the schema")
    toggles.add_argument("--drop-index", action="store_true", default=None,
                         help="Drop indexes absent from the schema")

    # plan command
    plan_parser = subparsers.add_parser("plan", parents=[toggles], help="Show the migration plan")
    plan_parser.add_argument("--check", action="store_true", help="Exit 1 if the plan is not empty")

    # sql command
    subparsers.add_parser("sql", parents=[toggles], help="Print the statements of a dry run")

    # apply command
    apply_parser = subparsers.add_parser("apply", parents=[toggles], help="Migrate the database")
    apply_parser.add_argument("--no-verify", action="store_true", help="Skip the post-run verification")
    apply_parser.add_argument("--timeout", type=float, help="Stop between operations after N seconds")

    # inspect command
    inspect_parser = subparsers.add_parser("inspect", help="Show the live tables")
    inspect_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    return parser


def _resolve_config(args: argparse.Namespace) -> ToolConfig:
    config = ToolConfig.from_env()
    if args.url:
        config.database = replace(config.database, url=args.url)
    if args.log_level or args.log_format:
        config.observability = replace(
            config.observability,
            log_level=args.log_level or config.observability.log_level,
            log_format=args.log_format or config.observability.log_format,
        )
    overrides = {}
    for name in ("global_unique_id", "drop_column", "drop_index"):
        if getattr(args, name, None):
            overrides[name] = True
    if getattr(args, "no_verify", False):
        overrides["verify"] = False
    if getattr(args, "timeout", None) is not None:
        overrides["timeout_seconds"] = args.timeout
    if overrides:
        config.migrate = replace(config.migrate, **overrides)
    config.validate()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the migration tool."""
    args = build_parser().parse_args(argv)

    try:
        config = _resolve_config(args)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    setup_logging(config.observability)

    try:
        cli = MigrateCLI(config)
    except (EntMigrateError, SQLAlchemyError, ImportError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        if args.command == "inspect":
            print(cli.inspect(args.format))
            return 0

        registry = load_schema(args.schema)

        if args.command == "plan":
            plan = cli.plan(registry)
            print(plan.report())
            return 1 if args.check and not plan.is_empty else 0

        if args.command == "sql":
            output = cli.sql(registry)
            if output:
                print(output)
            return 0

        print(cli.apply(registry))
        return 0
    except EntMigrateError as e:
        logger.debug(f"{e.code}: {e.details}")
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        cli.close()


if __name__ == "__main__":
    sys.exit(main())
