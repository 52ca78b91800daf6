"""Telegram Bot API transport using long polling."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

import httpx

from chatplane.adapters.base import (
    HELP_COMMAND,
    is_backend_bound,
    is_meta_command,
    meta_command_name,
    render_help,
    submit_error_text,
)
from chatplane.config import TelegramSettings
from chatplane.engine.core import Engine
from chatplane.engine.errors import SubmitError
from chatplane.engine.models import JobResult
from chatplane.engine.registry import TaskRegistry

logger = logging.getLogger(__name__)

ADAPTER_NAME = "telegram"
MAX_MESSAGE_CHARS = 4096
_POLL_ERROR_BACKOFF_SECONDS = 2.0


@dataclass(slots=True, frozen=True)
class TelegramUpdate:
    """Text message extracted from one ``getUpdates`` entry."""

    update_id: int
    chat_id: int
    user_id: str
    text: str


class TelegramApiError(RuntimeError):
    """Bot API call failed or returned ``ok: false``."""


class TelegramClient:
    """Thin Bot API client."""

    def __init__(
        self,
        settings: TelegramSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not settings.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is empty")
        self.settings = settings
        self._client = httpx.Client(
            base_url=f"{settings.api_base_url.rstrip('/')}/bot{settings.bot_token}",
            timeout=httpx.Timeout(settings.poll_timeout_seconds + 5.0, connect=10.0),
            transport=transport,
        )

    def get_updates(self, offset: int) -> list[TelegramUpdate]:
        payload = self._call(
            "getUpdates",
            {
                "offset": offset,
                "timeout": self.settings.poll_timeout_seconds,
                "allowed_updates": ["message"],
            },
        )
        return parse_updates(payload)

    def send_message(self, chat_id: int, text: str) -> None:
        for chunk in split_message(text):
            self._call("sendMessage", {"chat_id": chat_id, "text": chunk})

    def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        self._call("sendChatAction", {"chat_id": chat_id, "action": action})

    def _call(self, method: str, body: dict[str, Any]) -> Any:
        try:
            response = self._client.post(f"/{method}", json=body)
        except httpx.HTTPError as error:
            raise TelegramApiError(f"{method} failed: {error}") from error
        try:
            data = response.json()
        except ValueError as error:
            raise TelegramApiError(
                f"{method} returned non-JSON body (HTTP {response.status_code})",
            ) from error
        if not response.is_success or not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            raise TelegramApiError(
                f"{method} failed with HTTP {response.status_code}: {description or 'unknown error'}",
            )
        return data.get("result")

    def close(self) -> None:
        self._client.close()


class TelegramAdapter:
    """Polls for chat messages, submits them and replies with results."""

    def __init__(
        self,
        *,
        engine: Engine,
        registry: TaskRegistry,
        client: TelegramClient,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.client = client
        self._offset = 0

    def deliver(self, result: JobResult) -> None:
        try:
            chat_id = int(result.session_id)
        except ValueError:
            logger.error("Invalid telegram chat id: %s", result.session_id)
            return
        try:
            self.client.send_message(chat_id, result.render())
        except TelegramApiError as error:
            logger.warning("Failed to deliver job %s to chat %s: %s", result.job_id, chat_id, error)

    def run(self, stop: threading.Event) -> None:
        logger.info("Telegram adapter polling")
        while not stop.is_set():
            try:
                self.poll_once()
            except TelegramApiError as error:
                logger.warning("Telegram polling failed: %s", error)
                stop.wait(_POLL_ERROR_BACKOFF_SECONDS)
        logger.info("Telegram adapter stopped")

    def poll_once(self) -> int:
        """Fetch and handle one batch of updates; return how many were seen."""

        updates = self.client.get_updates(self._offset)
        for update in updates:
            self._offset = max(self._offset, update.update_id + 1)
            self.handle_update(update)
        return len(updates)

    def handle_update(self, update: TelegramUpdate) -> None:
        text = update.text.strip()
        if not text:
            return
        if is_meta_command(text):
            if meta_command_name(text) in (HELP_COMMAND, "start"):
                self._reply(update.chat_id, render_help(self.registry))
            return
        if is_backend_bound(text):
            self._typing(update.chat_id)
        try:
            self.engine.submit(str(update.chat_id), text, self, adapter=ADAPTER_NAME)
        except SubmitError as error:
            self._reply(update.chat_id, submit_error_text(error))

    def _reply(self, chat_id: int, text: str) -> None:
        try:
            self.client.send_message(chat_id, text)
        except TelegramApiError as error:
            logger.warning("Failed to reply to chat %s: %s", chat_id, error)

    def _typing(self, chat_id: int) -> None:
        try:
            self.client.send_chat_action(chat_id, "typing")
        except TelegramApiError as error:
            logger.debug("Typing indicator failed for chat %s: %s", chat_id, error)


def parse_updates(result: Any) -> list[TelegramUpdate]:
    """Extract text messages from a ``getUpdates`` result list."""

    updates: list[TelegramUpdate] = []
    if not isinstance(result, list):
        return updates
    for entry in result:
        if not isinstance(entry, dict) or not isinstance(entry.get("update_id"), int):
            continue
        message = entry.get("message")
        if not isinstance(message, dict):
            updates.append(TelegramUpdate(entry["update_id"], 0, "", ""))
            continue
        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        chat_id = chat.get("id") if isinstance(chat, dict) else None
        if not isinstance(chat_id, int) or chat_id == 0:
            updates.append(TelegramUpdate(entry["update_id"], 0, "", ""))
            continue
        sender_id = sender.get("id") if isinstance(sender, dict) else None
        text = message.get("text")
        updates.append(
            TelegramUpdate(
                update_id=entry["update_id"],
                chat_id=chat_id,
                user_id=str(sender_id) if sender_id is not None else "telegram",
                text=text if isinstance(text, str) else "",
            ),
        )
    return updates


def split_message(text: str, limit: int = MAX_MESSAGE_CHARS) -> list[str]:
    """Split text into chunks Telegram accepts, preferring line breaks."""

    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        chunks.append(remaining)
    return chunks
