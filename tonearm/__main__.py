"""
Tonearm - Entry Point

Run with: python -m tonearm <command>
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tonearm import __version__
from tonearm.config import Config, ConfigError, load_config
from tonearm.core import CoreError
from tonearm.core.db.models import AlbumRow, ItemRow
from tonearm.core.library import MusicLibrary
from tonearm.core.library_db import LibraryDb

logger = logging.getLogger("tonearm")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="tonearm",
        description="Tonearm - a music library database with full-text search",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to config.toml (default: ~/.config/tonearm/config.toml)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Library database path (overrides the config file)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import files or directories")
    p_import.add_argument(
        "paths",
        nargs="*",
        type=Path,
        help="Files or directories (default: the configured library directory)",
    )

    p_ls = sub.add_parser("ls", help="List items or albums matching a query")
    p_ls.add_argument("-a", "--album", action="store_true", help="List albums")
    p_ls.add_argument("query", nargs="*", help="Query terms")

    p_rm = sub.add_parser("rm", help="Remove items or albums matching a query")
    p_rm.add_argument("-a", "--album", action="store_true", help="Remove whole albums")
    p_rm.add_argument("-d", "--delete", action="store_true", help="Also delete files from disk")
    p_rm.add_argument("query", nargs="+", help="Query terms")

    p_modify = sub.add_parser("modify", help="Set fields on matching items or albums")
    p_modify.add_argument("-a", "--album", action="store_true", help="Modify albums")
    p_modify.add_argument(
        "args",
        nargs="+",
        metavar="QUERY|FIELD=VALUE",
        help="Query terms followed by field=value assignments",
    )

    p_update = sub.add_parser("update", help="Re-read tags of changed files")
    p_update.add_argument("query", nargs="*", help="Query terms")

    sub.add_parser("stats", help="Show library totals")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", type=str, default=None, help="Host address to bind to")
    p_serve.add_argument("--port", type=int, default=None, help="Port to listen on")

    return parser


def format_duration(seconds: float | None) -> str:
    total = int(max(seconds or 0.0, 0.0))
    hours, rest = divmod(total, 3600)
    mins, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def format_size(num_bytes: int) -> str:
    for unit, scale in (("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if num_bytes >= scale:
            return f"{num_bytes / scale:.1f} {unit}"
    return f"{num_bytes} B"


def format_item(item: ItemRow) -> str:
    return f"{item.artist} - {item.album} - {item.title} [{format_duration(item.length)}]"


def format_album(album: AlbumRow) -> str:
    year = f" ({album.year})" if album.year is not None else ""
    return f"{album.albumartist} - {album.album}{year}"


def split_modify_args(args: list[str]) -> tuple[list[str], list[str]]:
    """Split `modify` arguments into query terms and `field=value` assignments."""
    query: list[str] = []
    assignments: list[str] = []
    for arg in args:
        name, sep, _ = arg.partition("=")
        if sep and name.isidentifier():
            assignments.append(arg)
        else:
            query.append(arg)
    return query, assignments


async def run_command(args: argparse.Namespace, config: Config) -> int:
    """Open the library, run one subcommand, close the library."""
    db_path = args.db or config.library.database
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    db = LibraryDb(db_path)
    await db.open()
    try:
        library = MusicLibrary(
            db=db,
            extensions=config.import_.extensions,
            follow_symlinks=config.import_.follow_symlinks,
        )
        await library.initialize()
        return await dispatch(args, config, library)
    finally:
        await db.close()


async def dispatch(args: argparse.Namespace, config: Config, library: MusicLibrary) -> int:
    command = args.command

    if command == "import":
        paths = args.paths or [config.library.directory]
        report = await library.import_paths(paths)
        print(
            f"Imported {len(report.imported)} items "
            f"({report.items_created} new, {report.albums_created} new albums)"
        )
        for failure in report.failures:
            print(f"Failed: {failure.path}: {failure.reason}", file=sys.stderr)
        return 1 if report.failures and not report.imported else 0

    if command == "ls":
        if args.album:
            for album in await library.list_albums(args.query):
                print(format_album(album))
        else:
            for item in await library.list_items(args.query):
                print(format_item(item))
        return 0

    if command == "rm":
        result = await library.remove(args.query, album=args.album, delete_files=args.delete)
        if args.album:
            print(f"Removed {result.albums_removed} albums, {result.items_removed} items")
        else:
            print(f"Removed {result.items_removed} items")
        return 0

    if command == "modify":
        query, assignments = split_modify_args(args.args)
        if not assignments:
            print("modify: no field=value assignments given", file=sys.stderr)
            return 2
        count = await library.modify(query, assignments, album=args.album)
        print(f"Modified {count} {'albums' if args.album else 'items'}")
        return 0

    if command == "update":
        result = await library.update(args.query)
        print(f"Updated {result.updated} items")
        for path in result.missing:
            print(f"Missing: {path}", file=sys.stderr)
        return 0

    if command == "stats":
        stats = await library.stats()
        print(f"Tracks: {stats.items}")
        print(f"Albums: {stats.albums}")
        print(f"Artists: {stats.artists}")
        print(f"Total time: {format_duration(stats.total_length)}")
        print(f"Total size: {format_size(stats.total_size)}")
        return 0

    if command == "serve":
        from tonearm.web import WebServer

        server = WebServer(library)
        await server.serve(
            host=args.host or config.server.host,
            port=args.port or config.server.port,
        )
        return 0

    raise AssertionError(f"unhandled command {command!r}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config)
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except (CoreError, ConfigError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
