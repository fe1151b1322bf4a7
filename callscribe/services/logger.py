import asyncio
import contextlib
import sys
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.services.manager import BaseAsyncLoggingService

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DRAIN_TIMEOUT_SECONDS = 2.0

# tags rendered in this order, the rest alphabetically after them
TAG_ORDER = ("call_id", "job_id", "stage")


def format_log_line(timestamp: str, level: str, message: str, tags: dict[str, Any]) -> str:
    """
    Render one log line.

    ``[ts] [LEVEL] [call_id=abc job_id=def:2] message``; tags whose value is
    None are left out, and the tag block is omitted when nothing remains.
    """
    present = {key: value for key, value in tags.items() if value is not None}
    ordered = [key for key in TAG_ORDER if key in present]
    ordered += sorted(key for key in present if key not in TAG_ORDER)

    line = f"[{timestamp}] [{level}]"
    if ordered:
        line += " [" + " ".join(f"{key}={present[key]}" for key in ordered) + "]"
    return f"{line} {message}"


# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """Async logging service with a single writer task and per-call tagging."""

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        min_level: str = "DEBUG",
    ):
        """Initialize the async logging service.

        Args:
            context: Context instance containing server and services
            log_dir: Directory to store log files
            log_file: Name of the log file (if None, ``app_<timestamp>.log`` or
                     ``app.log`` depending on use_timestamp)
            use_timestamp: Use a timestamped file name when log_file is None
            console_output: Echo every line to stdout
            min_level: Lines below this level are dropped
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output

        if min_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {min_level}")
        self._min_level_index = LOG_LEVELS.index(min_level.upper())

        if log_file is None:
            if use_timestamp:
                self.log_file = f"app_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log"
            else:
                self.log_file = "app.log"
        else:
            self.log_file = log_file

        self.log_path = self.log_dir / self.log_file

        self._write_lock = asyncio.Lock()
        self._log_queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None
        self._level_counts: Counter[str] = Counter()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        """Create the log directory and start the writer task."""
        await super().on_start(services)

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._process_log_queue())

        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Stop the writer task and flush what is left in the queue."""
        await super().on_close()

        if self._writer_task:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._log_queue.join(), timeout=DRAIN_TIMEOUT_SECONDS)
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        await self._flush_queue()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    async def log(self, message: str, level: str = "INFO", **tags: Any) -> None:
        """Queue a log line.

        Args:
            message: The log message
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            **tags: Correlation tags such as call_id, job_id or stage
        """
        if LOG_LEVELS.index(level) < self._min_level_index:
            return

        self._level_counts[level] += 1
        line = format_log_line(datetime.now().isoformat(), level, message, tags)
        await self._log_queue.put(line)

    async def debug(self, message: str, **tags: Any) -> None:
        await self.log(message, "DEBUG", **tags)

    async def info(self, message: str, **tags: Any) -> None:
        await self.log(message, "INFO", **tags)

    async def warning(self, message: str, **tags: Any) -> None:
        await self.log(message, "WARNING", **tags)

    async def error(self, message: str, **tags: Any) -> None:
        await self.log(message, "ERROR", **tags)

    async def critical(self, message: str, **tags: Any) -> None:
        await self.log(message, "CRITICAL", **tags)

    def get_statistics(self) -> dict[str, Any]:
        """Lines accepted per level and lines still waiting to be written."""
        return {
            "lines": {level: self._level_counts[level] for level in LOG_LEVELS},
            "pending": self._log_queue.qsize(),
        }

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _process_log_queue(self) -> None:
        while True:
            line = await self._log_queue.get()
            await self._write_line(line)
            self._log_queue.task_done()

    async def _write_line(self, line: str) -> None:
        if self.console_output:
            print(line, file=sys.stdout, flush=True)

        async with self._write_lock:
            try:
                async with aiofiles.open(self.log_path, mode="a") as f:
                    await f.write(line + "\n")
            except OSError as e:
                print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)

    async def _flush_queue(self) -> None:
        while not self._log_queue.empty():
            try:
                line = self._log_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._write_line(line)
