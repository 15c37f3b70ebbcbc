"""Telegram Bot API channel over httpx."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Sequence

import httpx
from loguru import logger

from miniagi.bus.events import InboundMessage
from miniagi.channels.formatting import FormatSpan
from miniagi.errors import MessageNotModified, TransientTransportError, TransportError

if TYPE_CHECKING:
    from miniagi.gateway import Gateway

API_BASE = "https://api.telegram.org"

# Measured in UTF-16 code units, like every Bot API length and offset.
TELEGRAM_MAX_LENGTH = 4096


def _utf16_len(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def spans_to_entities(text: str, spans: Sequence[FormatSpan]) -> list[dict[str, Any]]:
    """Convert spans to Bot API entities, whose offsets count UTF-16 units."""
    entities = []
    for span in spans:
        offset = _utf16_len(text[: span.offset])
        length = _utf16_len(text[span.offset : span.end])
        entity: dict[str, Any] = {"type": span.kind, "offset": offset, "length": length}
        if span.kind == "pre" and span.language:
            entity["language"] = span.language
        entities.append(entity)
    return entities


class TelegramApi:
    """Minimal Bot API client raising miniagi transport errors."""

    def __init__(self, token: str, client: httpx.AsyncClient | None = None, base_url: str = API_BASE):
        self.token = token
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))

    async def call(self, method: str, payload: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        try:
            kwargs: dict[str, Any] = {"json": payload or {}}
            if timeout is not None:
                kwargs["timeout"] = timeout
            response = await self.client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"{method} timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"{method} returned HTTP {response.status_code}") from e

        if data.get("ok"):
            return data.get("result")

        description = data.get("description") or f"HTTP {response.status_code}"
        if "message is not modified" in description:
            raise MessageNotModified(description)
        if response.status_code == 429 or data.get("error_code") == 429:
            raise TransientTransportError(description)
        raise TransportError(description)

    async def aclose(self) -> None:
        await self.client.aclose()


class TelegramTransport:
    """The ``ChatTransport`` for one Telegram chat."""

    def __init__(self, api: TelegramApi, chat_id: int | str, max_length: int = TELEGRAM_MAX_LENGTH):
        self.api = api
        self.chat_id = chat_id
        self._max_length = max_length

    @property
    def max_length(self) -> int:
        return self._max_length

    def measure(self, text: str) -> int:
        return _utf16_len(text)

    def _payload(self, text: str, spans: Sequence[FormatSpan]) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": self.chat_id, "text": text}
        if spans:
            payload["entities"] = spans_to_entities(text, spans)
        return payload

    async def create(self, text: str, spans: Sequence[FormatSpan] = ()) -> int:
        result = await self.api.call("sendMessage", self._payload(text, spans))
        return result["message_id"]

    async def edit(self, handle: int, text: str, spans: Sequence[FormatSpan] = ()) -> None:
        payload = self._payload(text, spans)
        payload["message_id"] = handle
        await self.api.call("editMessageText", payload)

    async def signal_activity(self) -> None:
        await self.api.call("sendChatAction", {"chat_id": self.chat_id, "action": "typing"})


class TelegramChannel:
    """Long-polls ``getUpdates`` and hands text messages to the gateway."""

    def __init__(self, api: TelegramApi, gateway: Gateway, poll_timeout: int = 30):
        self.api = api
        self.gateway = gateway
        self.poll_timeout = poll_timeout
        self._running = False
        self._offset = 0
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def parse_update(update: dict[str, Any]) -> InboundMessage | None:
        message = update.get("message")
        if not message or not isinstance(message.get("text"), str):
            return None
        sender = message.get("from") or {}
        if "id" not in sender:
            return None
        return InboundMessage(
            channel="telegram",
            sender_id=str(sender["id"]),
            chat_id=str(message["chat"]["id"]),
            content=message["text"],
            username=sender.get("username"),
            metadata={"message_id": message.get("message_id")},
        )

    async def run(self) -> None:
        self._running = True
        me = await self.api.call("getMe")
        logger.info("Telegram bot started as @{}", me.get("username"))
        while self._running:
            try:
                updates = await self.api.call(
                    "getUpdates",
                    {"offset": self._offset, "timeout": self.poll_timeout},
                    timeout=self.poll_timeout + 10,
                )
            except TransientTransportError as e:
                logger.debug("Polling hiccup: {}", e)
                await asyncio.sleep(1)
                continue
            except TransportError as e:
                logger.error("Telegram polling failed: {}", e)
                await asyncio.sleep(5)
                continue

            for update in updates or []:
                self._offset = max(self._offset, update["update_id"] + 1)
                msg = self.parse_update(update)
                if msg is None:
                    continue
                task = asyncio.create_task(self._dispatch(msg))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, msg: InboundMessage) -> None:
        transport = TelegramTransport(self.api, msg.chat_id)
        try:
            await self.gateway.handle(msg, transport)
        except Exception:
            logger.exception("Failed to handle message from {}", msg.sender_id)

    def stop(self) -> None:
        self._running = False
        logger.info("Telegram bot stopping")
