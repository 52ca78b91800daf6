"""Subprocess-based backends for local CLI agents."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess

from chatplane.backend.base import BackendError, require_output
from chatplane.backend.failure_classifier import classify_backend_failure
from chatplane.engine.models import FailureClass

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 300


class CliToolBackend:
    """Run a local CLI tool per prompt, rendered from a command template.

    The template may contain ``{prompt}``; when it does not, the prompt is
    appended as the last argument.
    """

    def __init__(self, *, name: str, command_template: str) -> None:
        self.name = name
        self.command_template = command_template

    def invoke(self, prompt: str, timeout_seconds: float) -> str:
        argv = build_run_args(command_template=self.command_template, prompt=prompt)
        executable = argv[0]
        if shutil.which(executable) is None:
            raise BackendError(
                FailureClass.TOOL_UNAVAILABLE,
                f"{self.name} command not found: {executable}",
                reason_code=f"{_slug(self.name)}_tool_unavailable",
            )

        env = os.environ.copy()
        env["CHATPLANE_BACKEND"] = self.name
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as error:
            raise BackendError(
                FailureClass.TOOL_UNAVAILABLE,
                f"{self.name} command not found: {executable}",
                reason_code=f"{_slug(self.name)}_tool_unavailable",
            ) from error
        except OSError as error:
            raise BackendError(
                FailureClass.NETWORK_OR_PROCESS_FAILURE,
                f"{self.name} command failed to start: {error}",
                reason_code=f"{_slug(self.name)}_spawn_failed",
            ) from error

        try:
            stdout, stderr = process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as error:
            _terminate_process(process)
            logger.warning("%s command timed out after %.1fs", self.name, timeout_seconds)
            raise BackendError(
                FailureClass.TIMEOUT,
                f"{self.name} command timed out after {timeout_seconds:g}s",
                reason_code=f"{_slug(self.name)}_timeout",
            ) from error

        if process.returncode != 0:
            classification = classify_backend_failure(
                backend=self.name,
                output=f"{stderr}\n{stdout}",
                exit_code=process.returncode,
            )
            detail = _preview(stderr) or f"exit status {process.returncode}"
            logger.warning(
                "%s command failed exit_code=%d reason=%s",
                self.name,
                process.returncode,
                classification.reason_code,
            )
            raise BackendError(
                FailureClass.NETWORK_OR_PROCESS_FAILURE,
                f"{self.name} command failed: {detail}",
                reason_code=classification.reason_code,
            )

        if stdout.strip():
            return require_output(stdout, backend=self.name)
        return require_output(stderr, backend=self.name)


def build_run_args(*, command_template: str, prompt: str) -> list[str]:
    """Render a command template into argv with the prompt shell-quoted."""

    stripped = command_template.strip()
    if not stripped:
        raise BackendError(
            FailureClass.TOOL_UNAVAILABLE,
            "CLI backend command template is empty.",
        )
    if "{prompt}" not in stripped:
        stripped = f"{stripped} {{prompt}}"
    try:
        rendered = stripped.format(prompt=shlex.quote(prompt))
        argv = shlex.split(rendered)
    except (KeyError, IndexError) as error:
        raise BackendError(
            FailureClass.TOOL_UNAVAILABLE,
            f"Unsupported command template placeholder: {error}",
        ) from error
    except ValueError as error:
        raise BackendError(
            FailureClass.TOOL_UNAVAILABLE,
            f"Malformed command template: {error}",
        ) from error
    if not argv:
        raise BackendError(
            FailureClass.TOOL_UNAVAILABLE,
            "CLI backend command template rendered empty command.",
        )
    return argv


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.communicate(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.communicate(timeout=2)


def _slug(name: str) -> str:
    return name.replace("-", "_")


def _preview(text: str) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= _PREVIEW_CHARS:
        return collapsed
    return collapsed[: _PREVIEW_CHARS - 3] + "..."
