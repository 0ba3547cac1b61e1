"""
Command line entry point (``matviews``).

    matviews create  (--id ID | --name NAME | --all) [--force] [--yes]
    matviews refresh (--id ID | --name NAME | --all) [--row-count-strategy S] [--yes]
    matviews delete  (--id ID | --name NAME | --all) [--cascade] [--no-if-exists] [--yes]

Flags fall back to the YES, FORCE, CASCADE and ROW_COUNT_STRATEGY
environment variables. Every selected definition is handed to the
configured job adapter.
"""
import argparse
import json
import logging
import os
import sys
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from matviews.config import settings
from matviews.jobs.adapter import JobAdapter, get_job_adapter
from matviews.jobs.create_view_job import CreateViewJob
from matviews.jobs.delete_view_job import DeleteViewJob
from matviews.jobs.refresh_view_job import RefreshViewJob
from matviews.logging_config import setup_logging
from matviews.models.mat_views import MatViewDefinition
from matviews.services.errors import DefinitionNotFoundError, MatViewError

logger = logging.getLogger(__name__)

BOOLEANISH_TRUE = {"1", "true", "yes", "y", "--yes"}


class CommandError(Exception):
    pass


def booleanish_true(value) -> bool:
    return str(value if value is not None else "").strip().lower() in BOOLEANISH_TRUE


def flag_or_env(flag: bool, env_name: str) -> bool:
    return bool(flag) or booleanish_true(os.getenv(env_name))


def parse_row_count_strategy(value: Optional[str]) -> str:
    raw = (value or os.getenv("ROW_COUNT_STRATEGY") or "").strip()
    return raw or settings.default_row_count_strategy


def matview_exists(db: Session, rel: str, schema: str = "public") -> bool:
    count = db.execute(
        text("SELECT COUNT(*) FROM pg_matviews WHERE schemaname = :schema AND matviewname = :rel"),
        {"schema": schema, "rel": rel},
    ).scalar()
    return (count or 0) > 0


def find_definition_by_name(db: Session, raw_name: Optional[str]) -> MatViewDefinition:
    """
    Look a definition up by ``name`` or ``schema.name``.

    When a schema is given and the view exists there without a definition,
    the error says so instead of a plain "not found".
    """
    if raw_name is None or not str(raw_name).strip():
        raise CommandError("view name is required")

    raw_name = str(raw_name).strip()
    schema, rel = raw_name.split(".", 1) if "." in raw_name else (None, raw_name)

    definition = db.execute(select(MatViewDefinition).where(MatViewDefinition.name == rel)).scalar_one_or_none()
    if definition is not None:
        return definition

    if schema and matview_exists(db, rel, schema=schema):
        raise DefinitionNotFoundError(
            f"Materialized view {schema}.{rel} exists, but no MatViewDefinition was found for name={rel!r}"
        )
    raise DefinitionNotFoundError(f"No MatViewDefinition found for {raw_name!r}")


def select_definitions(db: Session, args) -> List[MatViewDefinition]:
    if args.all:
        return list(db.execute(select(MatViewDefinition).order_by(MatViewDefinition.id)).scalars())
    if args.name is not None:
        return [find_definition_by_name(db, args.name)]

    definition = db.get(MatViewDefinition, args.id)
    if definition is None:
        raise DefinitionNotFoundError(f"MatViewDefinition {args.id} not found")
    return [definition]


def confirm(message: str, skip: bool = False, stdin=None, stdout=None) -> None:
    """Ask ``Proceed? [y/N]:``; anything but an answer starting with y aborts."""
    if skip:
        logger.info(f"{message} (confirmation skipped)")
        return

    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    logger.info(message)
    stdout.write("Proceed? [y/N]: ")
    stdout.flush()
    answer = stdin.readline()
    if answer and answer.strip().lower().startswith("y"):
        return
    raise CommandError("Aborted.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="matviews", description="Manage PostgreSQL materialized views")
    commands = parser.add_subparsers(dest="command", required=True)

    def add_command(name: str, help_text: str) -> argparse.ArgumentParser:
        cmd = commands.add_parser(name, help=help_text)
        target = cmd.add_mutually_exclusive_group(required=True)
        target.add_argument("--id", type=int, help="Definition id")
        target.add_argument("--name", help="Definition name, optionally schema-qualified (schema.name)")
        target.add_argument("--all", action="store_true", help="Every definition")
        cmd.add_argument("--yes", action="store_true", help="Skip the confirmation prompt (env: YES)")
        return cmd

    create = add_command("create", "Create materialized views")
    create.add_argument("--force", action="store_true", help="Drop and recreate existing views (env: FORCE)")

    refresh = add_command("refresh", "Refresh materialized views")
    refresh.add_argument(
        "--row-count-strategy",
        help="none | estimated | exact (env: ROW_COUNT_STRATEGY, default: estimated)",
    )

    delete = add_command("delete", "Drop materialized views")
    delete.add_argument("--cascade", action="store_true", help="DROP ... CASCADE (env: CASCADE)")
    delete.add_argument(
        "--if-exists",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Skip views that are already gone instead of failing (default: on)",
    )

    return parser


def _job_for(args):
    """(job class, kwargs, description) for the parsed command."""
    if args.command == "create":
        force = flag_or_env(args.force, "FORCE")
        return CreateViewJob, {"force": force}, f"force={force}"
    if args.command == "refresh":
        strategy = parse_row_count_strategy(args.row_count_strategy)
        return RefreshViewJob, {"row_count_strategy": strategy}, f"row_count_strategy={strategy}"
    cascade = flag_or_env(args.cascade, "CASCADE")
    options = {"cascade": cascade, "if_exists": args.if_exists}
    return DeleteViewJob, options, f"cascade={cascade} if_exists={args.if_exists}"


def main(
    argv: Optional[Sequence[str]] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    adapter: Optional[JobAdapter] = None,
    stdin=None,
    stdout=None,
) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    stdout = stdout or sys.stdout

    if session_factory is None:
        from matviews.db import SessionLocal
        session_factory = SessionLocal
    adapter = adapter or get_job_adapter()

    job_class, job_kwargs, summary = _job_for(args)
    db = session_factory()
    try:
        definitions = select_definitions(db, args)
        if not definitions:
            logger.info("No materialized view definitions found")
            return 0

        names = ", ".join(d.name for d in definitions)
        confirm(
            f"Will enqueue {args.command} for {len(definitions)} view(s): {names} ({summary})",
            skip=flag_or_env(args.yes, "YES"),
            stdin=stdin,
            stdout=stdout,
        )

        adapter.start()
        for definition in definitions:
            result = adapter.enqueue(job_class, settings.job_queue, args=[definition.id], kwargs=job_kwargs)
            logger.info(f"Enqueued {job_class.__name__} for {definition.name} (id={definition.id})")
            stdout.write(json.dumps({"definition": definition.name, "result": result}, default=str) + "\n")
        adapter.drain()
    except (CommandError, MatViewError) as exc:
        logger.error(str(exc))
        sys.stderr.write(f"{exc}\n")
        return 1
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
