#!/usr/bin/env python3
"""
Legacy Collections Migration
Command line entry point: runs the migration steps against the database in MONGODB_URI
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient

from docmigrate import (
    BatchMetrics,
    BatchProcessor,
    CheckpointStore,
    ConfigManager,
    ConfigurationError,
    ConnectionManager,
    FrameworkConfig,
    MigrationError,
    MigrationLock,
    MigrationOptions,
    MigrationReporter,
    MigrationRunner,
    build_default_registry
)
from docmigrate.core.database import redact_uri

logger = logging.getLogger("migrate")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="migrate",
        description="Migrate legacy collections into the new schema"
    )
    parser.add_argument("-d", "--dry-run", action="store_true",
                        help="Simulate the migration without writing anything")
    parser.add_argument("-r", "--resume", action="store_true",
                        help="Resume from saved checkpoints, skipping completed steps")
    parser.add_argument("-b", "--batch", type=int, default=None, metavar="N",
                        help="Documents per batch (default: MIGRATE_BATCH_SIZE or 500)")
    parser.add_argument("-s", "--step", action="append", dest="steps", metavar="NAME",
                        help="Run only this step (repeatable)")
    parser.add_argument("--drop-old", action="store_true",
                        help="Drop legacy collections after a fully successful run")
    parser.add_argument("--yes", action="store_true",
                        help="Do not ask for confirmation before dropping collections")
    parser.add_argument("--reset", action="store_true",
                        help="Delete the checkpoints of the selected steps before running")
    parser.add_argument("--list-steps", action="store_true",
                        help="List the migration steps and exit")
    parser.add_argument("--config", metavar="FILE",
                        help="Configuration file (YAML, JSON or .env)")
    parser.add_argument("--no-progress", action="store_true",
                        help="Disable progress bars")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Override the configured log level")
    return parser


def configure_logging(level: str, log_file: Optional[str]):
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT, handlers=handlers)


def list_steps(stream=None):
    stream = stream or sys.stdout
    print("Migration steps (in execution order):", file=stream)
    for index, step in enumerate(build_default_registry(), 1):
        print(f"  {index:2}. {step.name:<14} {', '.join(step.source_collections)} → "
              f"{step.target_collection}", file=stream)
        if step.description:
            print(f"      {step.description}", file=stream)


def print_backup_reminder(config: FrameworkConfig, stream=None):
    stream = stream or sys.stdout
    backup_dir = f"./backup-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
    print("💾 Back up the database before running a live migration:", file=stream)
    print(f'   mongodump --uri="{redact_uri(config.database.connection_string)}" --out={backup_dir}',
          file=stream)


def confirm_drop(collections: Sequence[str], input_fn: Callable[[str], str] = input) -> bool:
    print(f"🗑️ The following {len(collections)} legacy collections will be dropped:")
    for name in collections:
        print(f"   • {name}")
    try:
        answer = input_fn("Type 'yes' to drop them: ")
    except EOFError:
        return False
    return answer.strip().lower() == "yes"


async def execute(args: argparse.Namespace, config: FrameworkConfig,
                  client_factory: Callable = AsyncIOMotorClient,
                  input_fn: Callable[[str], str] = input) -> int:
    """Run the migration described by the parsed arguments; returns the exit code"""
    options = MigrationOptions(
        batch_size=args.batch or config.migration.batch_size,
        dry_run=args.dry_run,
        resume=args.resume
    )
    registry = build_default_registry()
    manager = ConnectionManager(config.database_config(), client_factory=client_factory)
    reporter = MigrationReporter()
    lock: Optional[MigrationLock] = None

    try:
        handle = await manager.connect()
        database = handle.database

        if not options.dry_run:
            lock = MigrationLock(database, config.migration.lock_collection,
                                 config.migration.lock_ttl_seconds)
            await lock.acquire()

        checkpoint_store = CheckpointStore(database, config.migration.checkpoint_collection)
        metrics = BatchMetrics()
        processor = BatchProcessor(
            database, checkpoint_store,
            metrics=metrics,
            show_progress=config.migration.show_progress and not args.no_progress,
            heartbeat=lock.refresh if lock else None
        )
        runner = MigrationRunner(database, registry, checkpoint_store, processor)

        if args.reset:
            if options.dry_run:
                logger.warning("⚠️ Dry run: checkpoints are not reset")
            else:
                reset = await runner.reset_checkpoints(args.steps)
                logger.info(f"🔄 Reset checkpoints: {', '.join(reset) if reset else 'none found'}")

        results = await runner.run(args.steps, options)
        reporter.extend(results)
        reporter.print_summary(metrics.get_summary())

        failed = any(not r.succeeded or r.errors > 0 for r in results)

        if args.drop_old:
            if options.dry_run:
                logger.info("Dry run: legacy collections are kept")
            elif not runner.can_cleanup(results, options, args.steps):
                logger.warning("⚠️ Legacy collections kept: not every step completed without errors")
            else:
                collections = runner.legacy_collections(r.step_name for r in results)
                if args.yes or confirm_drop(collections, input_fn):
                    dropped = await runner.drop_legacy_collections(results)
                    logger.info(f"🗑️ Dropped {len(dropped)} of {len(collections)} legacy collections")
                else:
                    logger.info("Legacy collections kept")

        if failed:
            logger.error("❌ Migration finished with failures")
            return 1
        logger.info("🎉 Migration completed!" if not options.dry_run else "✅ Dry run completed")
        return 0

    except MigrationError as e:
        logger.error(f"❌ {e.message}")
        return 1
    except Exception as e:
        logger.error(f"❌ Migration failed: {e}")
        return 1
    finally:
        if lock is not None:
            await lock.release()
        await manager.disconnect()


async def main(argv: Optional[Sequence[str]] = None,
               client_factory: Callable = AsyncIOMotorClient,
               input_fn: Callable[[str], str] = input) -> int:
    args = build_parser().parse_args(argv)

    if args.list_steps:
        list_steps()
        return 0

    if args.batch is not None and args.batch <= 0:
        print(f"❌ --batch must be a positive integer, got {args.batch}", file=sys.stderr)
        return 1

    try:
        config = ConfigManager("MIGRATE").load_config(args.config)
    except ConfigurationError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    configure_logging(args.log_level or config.log_level, config.migration.log_file)
    logger.info(f"🚀 Starting migration ({config.environment.value} environment"
                f"{', dry run' if args.dry_run else ''})")

    if not args.dry_run:
        print_backup_reminder(config)

    return await execute(args, config, client_factory=client_factory, input_fn=input_fn)


def run():
    """Console script entry point"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
