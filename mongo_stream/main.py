import os
import asyncio
import argparse
from dotenv import load_dotenv
from . import __version__
from .utils import (
    configure_logging, log_info, log_warning, log_error, print_banner, print_summary
)
from .clients import get_source_destination_clients
from .collection_manager import CollectionManager
from .exceptions import StreamError
from .orchestrator import DEFAULT_CONCURRENCY, ReplicationOrchestrator, summarize
from .transfer import DEFAULT_BULK_SIZE, DataTransfer

TRUE_VALUES = ("1", "true", "yes", "on")


def env_flag(name):
    return os.environ.get(name, "false").strip().lower() in TRUE_VALUES


def get_args(argv=None):
    """Parse command line arguments, falling back to environment variables"""
    parser = argparse.ArgumentParser(description="Stream a MongoDB database into another MongoDB database")
    parser.add_argument("--source_uri", default=os.environ.get("STREAM_SOURCE"),
                        help="Source MongoDB URI [env: STREAM_SOURCE]")
    parser.add_argument("--destination_uri", default=os.environ.get("STREAM_DEST"),
                        help="Destination MongoDB URI [env: STREAM_DEST]")
    parser.add_argument("-d", "--db", default=os.environ.get("MONGODB_DB"),
                        help="Database to copy, same name on both sides [env: MONGODB_DB]")
    parser.add_argument("-c", "--collection", default=os.environ.get("MONGODB_COLLECTION"),
                        help="Copy only this collection [env: MONGODB_COLLECTION]")

    writes = parser.add_mutually_exclusive_group()
    writes.add_argument("-b", "--bulk", type=int, default=os.environ.get("STREAM_BULK"),
                        help=f"Documents per bulk write, default {DEFAULT_BULK_SIZE} [env: STREAM_BULK]")
    writes.add_argument("-n", "--nobulk", action="store_true", default=env_flag("STREAM_NOBULK"),
                        help="Do not upload documents in batches [env: STREAM_NOBULK]")

    parser.add_argument("-r", "--restart", action="store_true", default=env_flag("STREAM_RESTART"),
                        help="Drop each destination collection before copying it [env: STREAM_RESTART]")
    parser.add_argument("--concurrency", type=int,
                        default=os.environ.get("STREAM_CONCURRENCY", str(DEFAULT_CONCURRENCY)),
                        help="Collections copied at once [env: STREAM_CONCURRENCY]")
    parser.add_argument("--timeout", type=float, default=os.environ.get("STREAM_TIMEOUT"),
                        help="Give up on a collection after this many seconds [env: STREAM_TIMEOUT]")
    parser.add_argument("--verify", action="store_true", default=env_flag("STREAM_VERIFY"),
                        help="Compare document counts after each collection [env: STREAM_VERIFY]")
    parser.add_argument("--indexes", action="store_true", default=env_flag("STREAM_INDEXES"),
                        help="Recreate the source's secondary indexes [env: STREAM_INDEXES]")
    parser.add_argument("--no-progress", action="store_true", default=env_flag("STREAM_NO_PROGRESS"),
                        help="Hide progress bars [env: STREAM_NO_PROGRESS]")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper,
                        help="Logging level [env: LOG_LEVEL]")
    parser.add_argument("--log-file", default=os.environ.get("LOG_FILE"),
                        help="Also write log lines to this file [env: LOG_FILE]")

    args = parser.parse_args(argv)

    missing = [flag for flag, value in (("--source_uri", args.source_uri),
                                        ("--destination_uri", args.destination_uri),
                                        ("--db", args.db)) if not value]
    if missing:
        parser.error(f"the following arguments are required: {', '.join(missing)}")
    # Environment variables bypass the mutually exclusive group
    if args.bulk is not None and args.nobulk:
        parser.error("--bulk conflicts with --nobulk")
    if args.bulk is not None and args.bulk < 1:
        parser.error("--bulk must be at least 1")
    if args.concurrency < 1:
        parser.error("--concurrency must be at least 1")
    if args.timeout is not None and args.timeout <= 0:
        parser.error("--timeout must be positive")
    return args


async def replicate(args):
    """Connect both sides, pick the collections and run the transfers"""
    source, destination = await get_source_destination_clients(
        args.source_uri, args.destination_uri, args.db
    )
    try:
        collections = await CollectionManager.resolve_collections(source, args.collection)
        if not collections:
            log_warning(f"No collections found in database \"{args.db}\"")
            return []

        transfer = DataTransfer(
            bulk=not args.nobulk,
            bulk_size=args.bulk or DEFAULT_BULK_SIZE,
            restart=args.restart,
            verify=args.verify,
            copy_indexes=args.indexes,
            progress=not args.no_progress
        )
        log_info(
            f"Write mode: {'bulk of ' + str(transfer.bulk_size) if transfer.bulk else 'one document at a time'}, "
            f"restart: {transfer.restart}"
        )
        orchestrator = ReplicationOrchestrator(
            source, destination, transfer,
            concurrency=args.concurrency,
            timeout=args.timeout
        )
        return await orchestrator.run(collections)
    finally:
        source.close()
        destination.close()


def main(argv=None):
    """Main entry point"""
    # Load environment variables
    load_dotenv()

    args = get_args(argv)
    configure_logging(args.log_level, args.log_file)
    print_banner(__version__)

    try:
        results = asyncio.run(replicate(args))
    except StreamError as e:
        log_error(f"Replication failed: {e.message}")
        return 1

    print_summary(results)
    _, failed = summarize(results)
    return 1 if failed else 0
