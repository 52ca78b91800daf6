"""Local terminal transport."""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from typing import TextIO

import click

from chatplane.adapters.base import (
    HELP_COMMAND,
    is_meta_command,
    meta_command_name,
    render_help,
    submit_error_text,
)
from chatplane.engine.core import Engine
from chatplane.engine.errors import SubmitError
from chatplane.engine.models import JobResult
from chatplane.engine.registry import TaskRegistry

logger = logging.getLogger(__name__)

SESSION_ID = "cli"
ADAPTER_NAME = "cli"
BANNER = "chatplane CLI. Try: !ping, !echo hello, or !ask <prompt> (/help for more)"


class CliAdapter:
    """Reads commands line by line and prints results as they complete."""

    def __init__(
        self,
        *,
        engine: Engine,
        registry: TaskRegistry,
        input_stream: TextIO | None = None,
        write: Callable[[str], None] | None = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self._input = input_stream if input_stream is not None else sys.stdin
        self._write = write or click.echo
        self._write_lock = threading.Lock()
        self.submitted = 0

    def deliver(self, result: JobResult) -> None:
        self._emit(result.render())

    def run(self, stop: threading.Event) -> None:
        """Serve until EOF on input or until ``stop`` is set."""

        self._emit(BANNER)
        lines_done = threading.Event()
        reader = threading.Thread(
            target=self._read_lines,
            args=(stop, lines_done),
            daemon=True,
            name="chatplane-cli-reader",
        )
        reader.start()
        while not stop.is_set() and not lines_done.is_set():
            stop.wait(0.1)
        logger.info("CLI adapter finished submitted=%d", self.submitted)

    def handle_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return
        if is_meta_command(text):
            if meta_command_name(text) == HELP_COMMAND:
                self._emit(render_help(self.registry))
            else:
                self._emit(f"unknown meta command: {text.split()[0]} (try /help)")
            return
        try:
            self.engine.submit(SESSION_ID, text, self, adapter=ADAPTER_NAME)
        except SubmitError as error:
            self._emit(submit_error_text(error))
            return
        self.submitted += 1

    def _read_lines(self, stop: threading.Event, done: threading.Event) -> None:
        try:
            for line in self._input:
                if stop.is_set():
                    return
                self.handle_line(line)
        finally:
            done.set()

    def _emit(self, text: str) -> None:
        if not text:
            return
        with self._write_lock:
            self._write(text)
