#!/usr/bin/env python
"""Command line entry point for the note tree core."""
import argparse
import logging
import os
import sys
from pathlib import Path

from notetree import __version__
from notetree.config import config
from notetree.exceptions import NotetreeError
from notetree.models.db_models import init_db
from notetree.models.schema import InsertTarget, NoteDraft
from notetree.observability import configure_logging
from notetree.services.note_service import NoteService
from notetree.storage.gateway import SqlGateway
from notetree.storage.option_repository import OptionRepository

CLI_SOURCE_ID = "cli"


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Note tree maintenance")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTETREE_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files (console only when omitted)",
        type=str,
        default=os.environ.get("NOTETREE_LOG_DIR")
    )
    parser.add_argument(
        "--source-id",
        help="Source tag recorded with every change",
        default=CLI_SOURCE_ID
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create tables and default options")

    create = subparsers.add_parser("create", help="Create a note")
    create.add_argument("title")
    create.add_argument("--parent", default=None, help="Parent note id (root by default)")
    create.add_argument("--after", default=None, help="Insert after this placement id")

    delete = subparsers.add_parser("delete", help="Delete a placement")
    delete.add_argument("note_tree_id")

    set_option = subparsers.add_parser("set-option", help="Set a config store option")
    set_option.add_argument("name")
    set_option.add_argument("value")

    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)


def run_command(args, gateway: SqlGateway) -> str:
    """Execute one subcommand and return the line to print."""
    options = OptionRepository(gateway)
    if args.command == "init":
        added = options.init_default_options()
        return f"Database ready ({added} default options added)"

    if args.command == "set-option":
        options.set_option(args.name, args.value)
        return f"{args.name}={args.value}"

    service = NoteService(gateway=gateway, options=options)
    if args.command == "create":
        draft = NoteDraft(
            note_title=args.title,
            target=InsertTarget.AFTER.value if args.after else InsertTarget.INTO.value,
            target_note_tree_id=args.after,
        )
        created = service.create_note(args.parent or config.root_note_id, draft, args.source_id)
        return f"{created.note_id} {created.note_tree_id}"

    result = service.delete_note(args.note_tree_id, args.source_id)
    return (
        f"Deleted {len(result.deleted_note_tree_ids)} placements, "
        f"{len(result.deleted_note_ids)} notes"
    )


def main(argv=None):
    """Run the command line tool."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    if args.log_dir:
        try:
            configure_logging(log_dir=args.log_dir, level=log_level, console=True)
        except OSError as e:
            # Fall back to basic console logging if file logging fails
            logging.basicConfig(level=log_level)
            logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
    else:
        logging.basicConfig(level=log_level)

    logger = logging.getLogger(__name__)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        print(run_command(args, SqlGateway(engine)))
    except NotetreeError as e:
        logger.error(str(e))
        return 2
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
