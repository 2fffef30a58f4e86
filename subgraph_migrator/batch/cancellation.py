# subgraph_migrator/batch/cancellation.py
"""
Cooperative stop requests for batch runs.

A stop can come from end-of-input on an interactive stdin (Ctrl+D), from
SIGTERM, or from someone touching the ``.stop_requested`` flag file in the
results directory. The scheduler only looks at the token between waves, so
running jobs are never interrupted.
"""

import signal
import sys
import threading
from pathlib import Path
from typing import Optional, TextIO

from ..core.logging import LoggingMixin


STOP_FLAG_NAME = ".stop_requested"


class CancellationToken(LoggingMixin):

    def __init__(self, flag_file: Optional[Path] = None):
        self.flag_file = flag_file
        self.reason: Optional[str] = None
        self._event = threading.Event()

    @property
    def stop_requested(self) -> bool:
        if self._event.is_set():
            return True
        if self.flag_file is not None and self.flag_file.exists():
            self.request_stop("stop flag file")
            return True
        return False

    def request_stop(self, reason: str) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

        if self.flag_file is not None and self.flag_file.parent.exists():
            self.flag_file.touch(exist_ok=True)
        self.log_warning(f"Stop requested ({reason}). Will stop after current migration(s) complete...")

    def install_signal_handler(self, signum: int = signal.SIGTERM) -> None:
        """Must be called from the main thread."""
        signal.signal(signum, self._signal_handler)

    def _signal_handler(self, signum, frame):
        self.request_stop(f"signal {signal.Signals(signum).name}")

    def watch_stdin(self, stream: Optional[TextIO] = None) -> Optional[threading.Thread]:
        """Start a daemon thread that requests a stop at end of input.

        Nothing is started when the stream is not a terminal, since a
        non-interactive stdin is usually already at EOF.
        """
        stream = stream if stream is not None else sys.stdin
        if stream is None or not stream.isatty():
            self.log_warning("Running in non-interactive mode. Ctrl+D graceful stop is disabled.")
            if self.flag_file is not None:
                self.log_info(f"To stop, use: touch '{self.flag_file}'")
            return None

        thread = threading.Thread(target=self._drain, args=(stream,), name="stdin-stop-listener", daemon=True)
        thread.start()
        return thread

    def _drain(self, stream: TextIO) -> None:
        for _ in stream:
            pass
        self.request_stop("end of input (Ctrl+D)")
