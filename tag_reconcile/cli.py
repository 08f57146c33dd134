from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Sequence

from .batch_edit import BatchChanges, preview_text
from .config import Settings, find_config
from .models import SourceType
from .orchestrator import group_tracks
from .session import TaggingSession

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ShortPathFormatter(logging.Formatter):
    """Strips the given directory prefixes from log messages."""

    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        self.roots = [str(root) for root in roots if root]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for root in self.roots:
            message = message.replace(f"{root}/", "").replace(root, "")
        return message


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def configure_logging(level_name: str, roots: list[Path]) -> WarningBufferHandler:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(warn_buffer)

    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)
    return warn_buffer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile audio tags against online metadata sources")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    compare_parser = subparsers.add_parser(
        "compare", help="Search the selected sources and show proposed tag changes"
    )
    compare_parser.add_argument("paths", nargs="+", type=Path, help="Audio files or directories")
    compare_parser.add_argument(
        "--source",
        dest="sources",
        action="append",
        type=SourceType,
        choices=list(SourceType),
        metavar="{catalog,marketplace,fingerprint}",
        help="Source to query (repeatable, default: catalog)",
    )
    _add_apply_arguments(compare_parser)

    identify_parser = subparsers.add_parser(
        "identify", help="Identify files by acoustic fingerprint"
    )
    identify_parser.add_argument("paths", nargs="+", type=Path, help="Audio files or directories")
    identify_parser.add_argument(
        "--no-apply",
        action="store_true",
        help="Only list fingerprint matches, do not propose changes",
    )
    _add_apply_arguments(identify_parser)

    batch_parser = subparsers.add_parser(
        "batch-edit", help="Set the same tag values on many files at once"
    )
    batch_parser.add_argument("paths", nargs="+", type=Path, help="Audio files or directories")
    batch_parser.add_argument("--album", help="Album for every file")
    batch_parser.add_argument("--album-artist", help="Album artist for every file")
    batch_parser.add_argument("--genre", help="Genre for every file")
    batch_parser.add_argument("--year", type=int, help="Year for every file")
    batch_parser.add_argument(
        "--number-tracks",
        action="store_true",
        help="Number tracks 1, 2, 3... in file order",
    )
    batch_parser.add_argument("--cleanup", action="store_true", help="Remove blank text tags")
    batch_parser.add_argument("--find", default="", help="Text to replace in title, artist and album")
    batch_parser.add_argument("--replace", default="", help="Replacement for --find")
    batch_parser.add_argument("--dry-run", action="store_true", help="Only print the preview")
    batch_parser.add_argument("--save", action="store_true", help="Write the edited tags back to the files")

    cover_parser = subparsers.add_parser(
        "cover-art", help="Look up album cover images for the loaded files"
    )
    cover_parser.add_argument("paths", nargs="+", type=Path, help="Audio files or directories")
    return parser


def _add_apply_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--accept-all",
        action="store_true",
        help="Accept every pending change of the proposed comparison",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        help="Write accepted changes back to the files (requires --accept-all)",
    )


async def run_compare(session: TaggingSession, sources: Sequence[SourceType]) -> None:
    tracks = session.tracks
    summaries = await session.orchestrator.run_sources(tracks, sources, auto_apply=False)
    for summary in summaries:
        print(summary.describe())
    for track in tracks:
        best = session.cache.best_for(track.path)
        if best is not None and best.source is not SourceType.FINGERPRINT:
            await session.orchestrator.load_details(best)
        if session.orchestrator.select_best_overall_match(track) is None:
            print(f"\n{track.file_name}: no match above threshold")
            for item in session.cache.ranked_results(track.path):
                print(f"  {item.label}")


async def run_identify(session: TaggingSession, auto_apply: bool) -> None:
    tracks = session.tracks
    summary = await session.orchestrator.identify(tracks, auto_apply=auto_apply)
    print(summary.describe())
    if not auto_apply:
        for track in tracks:
            for item in session.cache.get_results(track.path):
                print(f"  {item.label}")


def batch_changes_from_args(args: argparse.Namespace) -> BatchChanges:
    return BatchChanges(
        album=args.album,
        album_artist=args.album_artist,
        genre=args.genre,
        year=args.year,
        auto_number_tracks=args.number_tracks,
        cleanup_tags=args.cleanup,
        find_pattern=args.find,
        replace_pattern=args.replace,
    )


def run_batch_edit(session: TaggingSession, changes: BatchChanges, *, dry_run: bool, save: bool) -> None:
    tracks = session.tracks
    print(preview_text(tracks, changes))
    if dry_run:
        return
    result = session.batch_edit(changes, tracks)
    print(f"\nEdited {len(result.edited)} files ({result.unchanged} unchanged)")
    if not save:
        return
    failed = 0
    for track in result.edited:
        if not session.save(track).success:
            failed += 1
    print(f"Saved {len(result.edited) - failed} files ({failed} failed)")


def run_cover_art(session: TaggingSession) -> None:
    for group in group_tracks(session.tracks):
        track = group[0]
        reference = session.find_cover_art(track)
        name = f"{track.album_artist or track.artist or '?'} - {track.album or '?'}"
        if reference is None:
            print(f"{name}: no cover found")
        else:
            print(f"{name}: {reference.url} ({reference.source})")


def finish_comparisons(session: TaggingSession, *, accept_all: bool, save: bool) -> None:
    for engine in session.registry.engines():
        if engine.comparison is None:
            continue
        if accept_all:
            accepted = engine.accept_all_changes()
            logger.debug("Accepted %d changes for %s", accepted, engine.path)
        print()
        print(engine.get_comparison_summary())
        if save and accept_all and engine.comparison.accepted_count:
            result = session.save(engine.track)
            print("Saved." if result.success else "Save failed.")


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config_path = find_config(args.config)
    settings = Settings.load(config_path) if config_path else Settings()
    roots = [path.resolve() for path in args.paths if path.is_dir()]
    warn_buffer = configure_logging(args.log_level, roots)
    reviewing = args.command in ("compare", "identify")
    if reviewing and args.save and not args.accept_all:
        parser.error("--save requires --accept-all")
    changes = batch_changes_from_args(args) if args.command == "batch-edit" else None
    if changes is not None and changes.is_empty():
        parser.error("batch-edit needs at least one change")

    session = TaggingSession.create(settings)
    try:
        report = session.load_files(args.paths)
        print(f"Loaded {report.loaded} files ({report.failed} failed, {report.duplicates} duplicates)")
        if not report.loaded:
            raise SystemExit(1)
        match args.command:
            case "compare":
                asyncio.run(run_compare(session, args.sources or [SourceType.CATALOG]))
            case "identify":
                asyncio.run(run_identify(session, auto_apply=not args.no_apply))
            case "batch-edit":
                run_batch_edit(session, changes, dry_run=args.dry_run, save=args.save)
            case "cover-art":
                run_cover_art(session)
            case _:
                parser.error("Unknown command")
        if reviewing:
            finish_comparisons(session, accept_all=args.accept_all, save=args.save)
    finally:
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")


if __name__ == "__main__":
    main()
