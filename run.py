"""Unified launcher for the content backup service.

Starts the backup scheduler and the web dashboard in a single process.
The scheduler runs in a background thread while the Flask dashboard
runs on the main thread. Stopping the process triggers one last backup
cycle so that due backups are not dropped on exit.

Usage:
    python run.py
    python run.py --config config/config.json --port 5000
    python run.py --scheduler-only
    python run.py --consolidate backup-daily-2024-06-01_00-00-00.zip
"""

import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG = str(PROJECT_ROOT / "config" / "config.json")

logger = logging.getLogger("content_backup")


def run_consolidate(config: dict, filename: str) -> int:
    from src.backup.settings import build_backup_manager

    manager = build_backup_manager(config)
    result = manager.consolidate(filename)
    if not result.success:
        logger.error("Consolidation of %s failed: %s", filename, result.error)
        return 1
    print(result.consolidated_path)
    return 0


def run_scheduler(config: dict, stop_event: threading.Event):
    """Run the backup scheduler until stop_event is set."""
    from src.backup.scheduler import BackupScheduler
    from src.backup.settings import build_backup_manager, get_persist_interval

    manager = build_backup_manager(config)
    scheduler = BackupScheduler(manager, persist_interval=get_persist_interval(config))
    scheduler.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(timeout=1.0)
    finally:
        scheduler.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Content Backup Service",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG,
        help="Path to config.json (default: config/config.json)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Dashboard host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        default=5000,
        type=int,
        help="Dashboard port (default: 5000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--scheduler-only",
        action="store_true",
        help="Run only the backup scheduler (no dashboard)",
    )
    parser.add_argument(
        "--consolidate",
        metavar="FILENAME",
        help="Consolidate one archive, print the copy's path and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from src.backup.settings import load_config

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Could not load config: %s", exc)
        return 1

    if args.consolidate:
        return run_consolidate(config, args.consolidate)

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        stop_event.set()
        if not args.scheduler_only:
            # Unwind app.run() so the scheduler gets its final cycle
            raise KeyboardInterrupt

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    # Scheduler only
    if args.scheduler_only:
        logger.info("Starting backup scheduler (no dashboard)...")
        run_scheduler(config, stop_event)
        return 0

    # Both: scheduler in background thread, dashboard on main thread
    from src.dashboard.app import create_app

    logger.info("Starting content backup service...")
    logger.info("  Dashboard: http://%s:%d", args.host, args.port)

    app = create_app(config_path=args.config)
    app.scheduler.start()
    try:
        app.run(host=args.host, port=args.port, debug=False)
    except KeyboardInterrupt:
        pass
    finally:
        app.scheduler.stop()
        logger.info("Service stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
