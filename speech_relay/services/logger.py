import asyncio
import contextlib
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from speech_relay.context import Context

from speech_relay.services.manager import BaseAsyncLoggingService

LOG_LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}

# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """Queue-backed async logger that appends to a single log file."""

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        min_level: str = "DEBUG",
        console_output: bool = True,
    ):
        """Initialize the async logging service.

        Args:
            context: Context instance containing the services
            log_dir: Directory to store log files
            log_file: Name of the log file (a timestamped name is generated if None)
            min_level: Messages below this level are dropped
            console_output: If True, every message is also printed to stdout
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output

        level = min_level.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {min_level}")
        self.min_level = level

        if log_file is None:
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            log_file = f"speech_relay_{timestamp}.log"
        self.log_file = log_file
        self.log_path = self.log_dir / self.log_file

        self._write_lock = asyncio.Lock()
        self._log_queue: asyncio.Queue = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        """Create the log directory and start the background writer."""
        await super().on_start(services)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._process_log_queue())

        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Stop the writer and flush whatever is still queued."""
        await super().on_close()

        if self._writer_task:
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        await self._flush_queue()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    def is_enabled_for(self, level: str) -> bool:
        return LOG_LEVELS.get(level, 0) >= LOG_LEVELS[self.min_level]

    async def log(self, message: str, level: str = "INFO") -> None:
        """Queue a log message.

        Args:
            message: The log message
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        if not self.is_enabled_for(level):
            return

        timestamp = datetime.now().isoformat()
        await self._log_queue.put(f"[{timestamp}] [{level}] {message}")

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _process_log_queue(self) -> None:
        """Drain the queue into the log file until cancelled."""
        while True:
            message = await self._log_queue.get()
            try:
                await self._write_to_file(message)
            finally:
                self._log_queue.task_done()

    async def _write_to_file(self, message: str) -> None:
        if self.console_output:
            print(message, file=sys.stdout, flush=True)

        async with self._write_lock:
            try:
                async with aiofiles.open(self.log_path, mode="a", encoding="utf-8") as f:
                    await f.write(message + "\n")
            except OSError as e:
                print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)

    async def _flush_queue(self) -> None:
        while not self._log_queue.empty():
            try:
                message = self._log_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._write_to_file(message)
