"""Command-line interface for pgstruct."""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from pgstruct.config import Config, parse_schema_list
from pgstruct.exceptions import ConfigError, ExecutionFailed
from pgstruct.plan.builder import Plan, PlanBuilder
from pgstruct.plan.emitter import Statement, StatementEmitter
from pgstruct.postgres.utils import get_online_model
from pgstruct.schema.codegen import DdlRenderer
from pgstruct.schema.diff import ChangeOp, SchemaDiffer
from pgstruct.schema.exporter import export_model_to_directory, export_model_yaml
from pgstruct.schema.loader import load_schema_model
from pgstruct.schema.models import SchemaModel

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_DESTRUCTIVE = 3


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--source", help="Desired schema YAML file or directory (PGSTRUCT_SOURCE)"
    )


def _add_target_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--target", help="Current schema YAML file or directory (PGSTRUCT_TARGET)"
    )
    parser.add_argument(
        "--online",
        action="store_true",
        help="Compare against actual database state (requires DB connection)",
    )
    _add_connection_args(parser)


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dsn", help="Target connection string (PGSTRUCT_TARGET_DSN)")
    parser.add_argument(
        "--schemas",
        help="Comma-separated schemas to introspect (default: the desired schemas)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgstruct",
        description="PostgreSQL structure migration tool",
    )
    parser.add_argument("--profile", help="Profile name in ~/.pgstruct.cfg")
    parser.add_argument("--log-level", help="Logging level (PGSTRUCT_LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate schema files")
    _add_source_args(validate_parser)

    diff_parser = subparsers.add_parser("diff", help="Show schema diff")
    _add_source_args(diff_parser)
    _add_target_args(diff_parser)
    diff_parser.add_argument(
        "--exit-code",
        action="store_true",
        help="Exit with 1 when changes are pending",
    )

    plan_parser = subparsers.add_parser("plan", help="Show the ordered plan and its SQL")
    _add_source_args(plan_parser)
    _add_target_args(plan_parser)
    plan_parser.add_argument(
        "--output",
        type=Path,
        help="Write the SQL script to this file (default: stdout)",
    )
    plan_parser.add_argument("--description", default="", help="Script description")

    apply_parser = subparsers.add_parser("apply", help="Apply the plan to the target")
    _add_source_args(apply_parser)
    _add_connection_args(apply_parser)
    apply_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show statements without executing",
    )
    apply_parser.add_argument(
        "--allow-destructive",
        action="store_true",
        default=None,
        help="Allow destructive changes (DROP TABLE, DROP COLUMN, etc.)",
    )

    export_parser = subparsers.add_parser(
        "export", help="Export the target database structure to YAML"
    )
    _add_connection_args(export_parser)
    export_parser.add_argument(
        "--output",
        type=Path,
        help="Directory to write one YAML file per schema (default: stdout)",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _config_from_args(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO), format="%(message)s"
    )

    if args.command == "validate":
        return cmd_validate(args, config)
    elif args.command == "diff":
        return cmd_diff(args, config)
    elif args.command == "plan":
        return cmd_plan(args, config)
    elif args.command == "apply":
        return cmd_apply(args, config)
    elif args.command == "export":
        return cmd_export(args, config)
    else:
        print(f"Command '{args.command}' not yet implemented", file=sys.stderr)
        return EXIT_ERROR


def _config_from_args(args: argparse.Namespace) -> Config:
    schemas = getattr(args, "schemas", None)
    return Config.from_env(
        source=getattr(args, "source", None),
        target=getattr(args, "target", None),
        target_dsn=getattr(args, "dsn", None),
        schemas=parse_schema_list(schemas) if schemas else None,
        allow_destructive=getattr(args, "allow_destructive", None),
        log_level=args.log_level,
        profile=args.profile,
    )


def _load_current(
    args: argparse.Namespace, config: Config, desired: SchemaModel
) -> SchemaModel:
    """The current snapshot: the live target, a YAML snapshot, or empty."""
    if args.online:
        if not config.schemas:
            config.schemas = sorted(desired.schema_names())
        return get_online_model(config)
    if config.target:
        return load_schema_model(Path(config.target))
    return SchemaModel.empty()


def _mode(args: argparse.Namespace, config: Config) -> str:
    if args.online:
        return "online"
    return "snapshot" if config.target else "offline"


def _format_op(op: ChangeOp) -> str:
    prefix = "[DESTRUCTIVE] " if op.is_destructive else ""
    return f"  {prefix}{op.describe()}"


def _build_statements(
    desired: SchemaModel, current: SchemaModel
) -> tuple[Plan, list[Statement]]:
    changes = SchemaDiffer().diff(desired, current)
    plan = PlanBuilder(desired, current).build(changes)
    return plan, StatementEmitter().emit(plan)


def cmd_validate(args: argparse.Namespace, config: Config) -> int:
    """Validate schema files."""
    try:
        model = load_schema_model(Path(config.source))
        tables = model.tables()
        print(f"Validated {len(tables)} tables:")
        for table in tables:
            print(f"  - {table.qualified_name} ({len(table.columns)} columns)")
        return EXIT_OK
    except Exception as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return EXIT_ERROR


def cmd_diff(args: argparse.Namespace, config: Config) -> int:
    """Show schema diff.

    Offline mode compares the source against an empty target, snapshot mode
    against a YAML snapshot and online mode against the live database.
    """
    try:
        desired = load_schema_model(Path(config.source))
        current = _load_current(args, config, desired)

        changes = SchemaDiffer().diff(desired, current)

        if not changes:
            print("No changes detected")
            return EXIT_OK

        print(f"Found {len(changes)} changes ({_mode(args, config)} mode):")
        for change in changes:
            print(_format_op(change))

        return EXIT_ERROR if args.exit_code else EXIT_OK
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        print(f"Diff error: {e}", file=sys.stderr)
        return EXIT_ERROR


def cmd_plan(args: argparse.Namespace, config: Config) -> int:
    """Show the phased plan and the SQL it renders to."""
    try:
        desired = load_schema_model(Path(config.source))
        current = _load_current(args, config, desired)
        plan, statements = _build_statements(desired, current)

        if plan.is_empty:
            print("No changes to plan")
            return EXIT_OK

        print(f"Plan ({len(plan)} operations, {_mode(args, config)} mode):")
        for phase in plan.phases:
            print(f"  Phase {phase.phase.name.lower()}:")
            for op in phase.ops:
                print(f"  {_format_op(op)}")

        sql = DdlRenderer().render_script(statements, args.description)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(sql)
            print(f"\nWrote {len(statements)} statement(s) to {args.output}")
        else:
            print()
            print(sql)
        return EXIT_OK
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        print(f"Plan error: {e}", file=sys.stderr)
        return EXIT_ERROR


def cmd_apply(args: argparse.Namespace, config: Config) -> int:
    """Apply the plan to the target database."""
    try:
        from pgstruct.plan.runner import PlanRunner, SqlExecutor
        from pgstruct.postgres.client import PostgresClient

        config.validate_for_db_ops()
        desired = load_schema_model(Path(config.source))
        if not config.schemas:
            config.schemas = sorted(desired.schema_names())
        current = get_online_model(config)
        plan, statements = _build_statements(desired, current)

        if plan.is_empty:
            print("Target is up to date")
            return EXIT_OK

        destructive = plan.destructive_ops
        if destructive and not config.allow_destructive:
            print(
                "Error: destructive changes detected. Use --allow-destructive to proceed.",
                file=sys.stderr,
            )
            for op in destructive:
                print(f"  - {op.describe()}", file=sys.stderr)
            return EXIT_DESTRUCTIVE

        print(f"Found {len(statements)} pending statement(s)")

        cancel_event = threading.Event()
        previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
        try:
            with PostgresClient(config.target_dsn) as client:
                runner = PlanRunner(SqlExecutor(client, DdlRenderer()))
                report = runner.apply(
                    statements, cancel_event=cancel_event, dry_run=args.dry_run
                )
        except ExecutionFailed as e:
            print(f"Apply error: {e}", file=sys.stderr)
            if e.message:
                print(f"  statement: {e.message}", file=sys.stderr)
            print(f"  last applied index: {e.last_applied_index}", file=sys.stderr)
            return EXIT_ERROR
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        if report.dry_run:
            print("\nDry run - no statements executed")
        elif report.cancelled:
            print(
                f"\nCancelled after {len(report.applied)} of {report.total} statement(s) "
                f"(last applied index {report.last_applied_index})"
            )
            return EXIT_ERROR
        else:
            print(f"\nSuccessfully applied {len(report.applied)} statement(s)")
        return EXIT_OK
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        print(f"Apply error: {e}", file=sys.stderr)
        return EXIT_ERROR


def cmd_export(args: argparse.Namespace, config: Config) -> int:
    """Export the target database structure to YAML."""
    try:
        model = get_online_model(config)
        if args.output:
            files = export_model_to_directory(model, args.output)
            print(f"Exported {len(files)} schema file(s) to {args.output}")
        else:
            print(export_model_yaml(model), end="")
        return EXIT_OK
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        print(f"Export error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
