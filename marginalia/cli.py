"""Command-line interface for Marginalia."""

import argparse
import asyncio
import sys
from pathlib import Path

from . import __version__
from .logging import setup_logging, get_logger

logger = get_logger(__name__)


def _local_backend(settings):
    """The backend the server itself writes to; never the remote channel."""
    from .backends import VideoScopedBackend
    from .config import create_backend

    if settings.backend == "remote":
        logger.warning("Remote backend cannot back the server, using the notes file")
        return VideoScopedBackend(settings.data_dir / "notes.json")
    return create_backend(settings)


def _load_store(settings):
    from .store import AnnotationStore

    store = AnnotationStore(_local_backend(settings))
    outcome = asyncio.run(store.load())
    if not outcome.ok:
        logger.error("Could not read notes: %s", outcome.reason)
        sys.exit(1)
    return store


def cmd_serve(args):
    """Run the background notes server."""
    from .background import NotesService
    from .config import get_settings
    from .server import run_server

    settings = get_settings()
    backup_dir = Path(args.backup_dir) if args.backup_dir else None
    service = NotesService(_local_backend(settings), backup_dir=backup_dir)
    run_server(service, host=args.host, port=args.port)


def cmd_list(args):
    """Print notes, optionally restricted to one video."""
    from .config import get_settings
    from .models import strip_markup

    store = _load_store(get_settings())

    if args.video and store.video(args.video) is None:
        logger.error("No notes for video: %s", args.video)
        sys.exit(1)

    videos = [store.video(args.video)] if args.video else store.videos()
    if not videos:
        logger.info("No notes yet.")
        return

    for video in videos:
        print(f"{video.video_id}  {video.title}".rstrip())
        for note in store.notes_for(video.video_id, order=args.order):
            text = " ".join(strip_markup(note.content).split())
            print(f"  [{note.display_time}] {text}")


def cmd_export(args):
    """Export one video's notes to a file."""
    from .config import get_settings
    from .export import export_notes

    store = _load_store(get_settings())
    video = store.video(args.video)
    if video is None or not video.notes:
        logger.error("No notes to export for video: %s", args.video)
        sys.exit(1)

    output = Path(args.output) if args.output else None
    path = export_notes(video, args.format, output)
    logger.info("Exported %d note(s) to %s", len(video.notes), path)


def main():
    parser = argparse.ArgumentParser(
        prog="marginalia",
        description="Marginalia - timestamped notes for video pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  marginalia serve                          # Run the background notes server
  marginalia list                           # List notes for every video
  marginalia list --video dQw4w9WgXcQ       # List one video's notes
  marginalia export --video dQw4w9WgXcQ --format vtt

Environment:
  MARGINALIA_BACKEND     keyvalue | video | remote (default: video)
  MARGINALIA_DATA_DIR    Where notes are stored (default: ~/.marginalia)
        """,
    )
    parser.add_argument("--version", action="version", version=f"marginalia {__version__}")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show debug output"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Show only errors"
    )
    parser.add_argument(
        "--log-file", metavar="FILE", help="Write logs to file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the background notes server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8766, help="Port (default: 8766)")
    serve_parser.add_argument("--backup-dir", help="Also write a notes.json backup here on every save")

    list_parser = subparsers.add_parser("list", help="List saved notes")
    list_parser.add_argument("--video", help="Only this video id")
    list_parser.add_argument(
        "--order",
        choices=["time", "recent", "oldest"],
        default="time",
        help="Sort order (default: time)",
    )

    export_parser = subparsers.add_parser("export", help="Export a video's notes")
    export_parser.add_argument("--video", required=True, help="Video id to export")
    export_parser.add_argument(
        "--format", "-f", choices=["vtt", "srt", "json", "md"], default="vtt",
        help="Export format (default: vtt)",
    )
    export_parser.add_argument("--output", "-o", help="Output file")

    args = parser.parse_args()

    setup_logging(
        verbose=getattr(args, "verbose", False),
        quiet=getattr(args, "quiet", False),
        log_file=getattr(args, "log_file", None),
    )

    if args.command is None:
        parser.print_help()
        return

    commands = {
        "serve": cmd_serve,
        "list": cmd_list,
        "export": cmd_export,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
