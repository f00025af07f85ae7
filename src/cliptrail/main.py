#!/usr/bin/env python3

import argparse
import logging
import signal
import sys
import time
from dataclasses import replace
from typing import Optional

from cliptrail.clipboard import ClipboardBackend, MemoryClipboard, get_clipboard_backend
from cliptrail.config import HistoryConfig
from cliptrail.database import HistoryStore
from cliptrail.services import ClipboardWatcher, HistoryController, RestoreWriter

logger = logging.getLogger(__name__)


class ClipTrailApp:
    """Wires the clipboard history services together for one process."""

    def __init__(
        self,
        config: HistoryConfig,
        backend: Optional[ClipboardBackend] = None,
        store: Optional[HistoryStore] = None,
    ):
        self.config = config
        self.backend = backend or get_clipboard_backend()
        self.store = store or config.create_store()

        self.watcher = ClipboardWatcher(self.backend, poll_interval=config.poll_interval)
        self.restore_writer = RestoreWriter(self.backend, self.watcher)
        self.controller = HistoryController(
            self.store,
            restore_writer=self.restore_writer,
            page_size=config.page_size,
            max_in_memory=config.max_in_memory,
        )
        self.watcher.on_capture(self.controller.handle_capture)
        self.running = False

    def start(self):
        if self.running:
            return

        self.running = True
        first_page = self.controller.load_more()
        if first_page is not None:
            try:
                first_page.result(timeout=10.0)
            except Exception as e:
                logger.warning(f"Could not load history: {e}")
        self.watcher.start()
        logger.info(f"cliptrail running ({self.store.count()} entries). Press Ctrl+C to stop")

    def stop(self):
        if not self.running:
            return

        self.running = False
        self.watcher.stop()
        self.controller.flush()
        self.controller.close()
        self.store.close()
        logger.info("cliptrail stopped")

    def run_forever(self):
        self.start()

        try:
            while self.running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="cliptrail - local clipboard history"
    )

    parser.add_argument(
        "-i", "--poll-interval",
        type=float,
        default=None,
        help="Clipboard polling interval in seconds (default: 0.5)"
    )

    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Entries per history page (default: 20)"
    )

    parser.add_argument(
        "--memory",
        action="store_true",
        help="Keep history in memory only instead of Redis"
    )

    parser.add_argument(
        "--fake-clipboard",
        action="store_true",
        help="Use an in-process clipboard instead of the OS clipboard"
    )

    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: INFO)"
    )

    return parser.parse_args(argv)


def build_config(args) -> HistoryConfig:
    config = HistoryConfig.from_env()
    overrides = {}
    if args.poll_interval is not None:
        overrides["poll_interval"] = args.poll_interval
    if args.page_size is not None:
        overrides["page_size"] = args.page_size
        overrides["max_in_memory"] = max(config.max_in_memory, args.page_size)
    if args.memory:
        overrides["store"] = "memory"
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    return replace(config, **overrides) if overrides else config


def main(argv=None):
    args = parse_args(argv)
    config = build_config(args)

    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO),
                        format='%(levelname)s: %(message)s')

    backend = MemoryClipboard() if args.fake_clipboard else None
    try:
        app = ClipTrailApp(config, backend=backend)
    except Exception as e:
        logger.error(f"Could not start cliptrail: {e}")
        sys.exit(1)

    def signal_handler(signum, frame):
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run_forever()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
