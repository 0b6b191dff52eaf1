#!/usr/bin/env python3
"""
MediaScribe v1.0.0 — command-line entry point.

    python main.py interview.mp4            # transcribe, write Markdown
    python main.py --check                  # tools, config and connections
"""

import sys
import os
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Ensure Homebrew paths are in PATH ────────────────────────────────
# Launched from a GUI shell, Homebrew's bin directories can be missing
# from PATH, which hides ffmpeg and ffprobe.
HOMEBREW_PATHS = [
    "/opt/homebrew/bin",          # Apple Silicon default
    "/usr/local/bin",             # Intel Mac default
]

current_path = os.environ.get("PATH", "")
for p in HOMEBREW_PATHS:
    if os.path.isdir(p) and p not in current_path.split(os.pathsep):
        current_path = p + os.pathsep + current_path
os.environ["PATH"] = current_path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mediascribe.core.constants import APP_NAME, APP_VERSION, LOG_DIR, JobStatus  # noqa: E402

logger = logging.getLogger("mediascribe")


def setup_logging(verbose: bool = False) -> Path:
    """Log to ~/.mediascribe/logs/app.log and to stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "app.log"
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediascribe",
        description="Turn an audio/video file into a cleaned, speaker-labelled Markdown transcript.",
    )
    parser.add_argument("file", nargs="?", help="audio or video file to transcribe")
    parser.add_argument("--output-dir", type=Path, help="where to write the Markdown transcript")
    parser.add_argument("--list", action="store_true", help="list known jobs")
    parser.add_argument("--status", metavar="JOB_ID", help="show a job's status")
    parser.add_argument("--result", metavar="JOB_ID", help="print a job's Markdown")
    parser.add_argument("--delete", metavar="JOB_ID", help="delete a job and its artifacts")
    parser.add_argument("--check", action="store_true", help="check tools, config and connections")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def run_check(config) -> int:
    from mediascribe.core.diagnostics import get_diagnostics, check_connections, missing_tools

    info = get_diagnostics(config)
    print(f"ffmpeg:  {info['ffmpeg_version']}")
    print(f"ffprobe: {info['ffprobe_version']}")
    print(f"storage: {info['storage']}")
    if info['config']['missing']:
        print("missing settings: " + ", ".join(info['config']['missing']))
    conn = check_connections(config)
    print(f"openai:  {'ok' if conn['openai']['ok'] else conn['openai'].get('message')}")
    print(f"s3:      {'ok' if conn['s3']['ok'] else conn['s3'].get('error')}")
    return 1 if missing_tools() else 0


def transcribe_file(manager, path: Path, output_dir: Path) -> int:
    from mediascribe.core.output_writer import write_transcript
    from mediascribe.core.diagnostics import missing_tools

    if missing_tools():
        print("ffmpeg and ffprobe must be installed and on PATH.", file=sys.stderr)
        return 1
    if not path.is_file():
        print(f"No such file: {path}", file=sys.stderr)
        return 1

    job_id = manager.submit(path.read_bytes(), path.name)
    print(f"job {job_id}")

    last = None
    while not manager.wait(job_id, timeout=1.0):
        status = manager.status(job_id)
        line = f"[{status['progress']:3d}%] {status['message']}" if status else None
        if line and line != last:
            print(line)
            last = line

    status = manager.status(job_id)
    if not status or status['status'] != JobStatus.COMPLETED:
        message = status['message'] if status else "job disappeared"
        print(f"Failed: {message}", file=sys.stderr)
        return 1

    out = write_transcript(manager.result(job_id) or "", output_dir,
                           status['display_name'], job_id)
    print(f"Wrote {out}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    try:
        from mediascribe.core.config import AppConfig
        from mediascribe.core.job_manager import TranscriptionManager

        config = AppConfig()
        if args.check:
            return run_check(config)

        manager = TranscriptionManager(config)

        if args.list:
            for job in manager.list():
                print(f"{job['job_id']}  {job['created_at'] or '-':32}  {job['display_name']}")
            return 0
        if args.status:
            status = manager.status(args.status)
            print(status if status else "Job not found")
            return 0 if status else 1
        if args.result:
            markdown = manager.result(args.result)
            if markdown is None:
                print("Job not found", file=sys.stderr)
                return 1
            print(markdown)
            return 0
        if args.delete:
            print(manager.delete(args.delete))
            return 0
        if args.file:
            return transcribe_file(manager, Path(args.file),
                                   args.output_dir or config.output_root)

        build_parser().print_help()
        return 2
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        print(f"{error_msg}\n\nCheck logs at: {log_file}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
