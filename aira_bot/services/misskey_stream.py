from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import random
import uuid
from typing import Any, AsyncIterator, Dict, Tuple

import aiohttp

logger = logging.getLogger("aira_bot")

StreamEvent = Tuple[str, Dict[str, Any]]


def streaming_url(host: str, token: str) -> str:
    base = host.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}/streaming?i={token}"


class MisskeyStream:
    """Main-channel subscription over the Misskey streaming API, reconnecting until closed."""

    def __init__(
        self,
        host: str,
        token: str,
        *,
        channel: str = "main",
        reconnect_max_seconds: float = 60.0,
    ) -> None:
        self.url = streaming_url(host, token)
        self.channel = channel
        self.reconnect_max_seconds = reconnect_max_seconds
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def close(self) -> None:
        self._closed.set()
        if self._ws is not None and not self._ws.closed:
            with contextlib.suppress(Exception):
                await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def events(self) -> AsyncIterator[StreamEvent]:
        attempt = 0
        while not self.closed:
            try:
                async for event in self._connect_once():
                    attempt = 0
                    yield event
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError) as exc:
                logger.warning("Stream connection lost: %s", exc)
            if self.closed:
                return
            attempt += 1
            backoff = min(self.reconnect_max_seconds, 2 ** min(attempt, 6)) + random.random()
            logger.info("Reconnecting stream in %.1fs (attempt %s)", backoff, attempt)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._closed.wait(), timeout=backoff)

    async def _connect_once(self) -> AsyncIterator[StreamEvent]:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        channel_id = uuid.uuid4().hex
        async with self._session.ws_connect(self.url, heartbeat=30.0) as ws:
            self._ws = ws
            await ws.send_json({"type": "connect", "body": {"channel": self.channel, "id": channel_id}})
            logger.info("Stream connected (channel=%s)", self.channel)
            async for frame in ws:
                if frame.type == aiohttp.WSMsgType.ERROR:
                    raise ConnectionError(f"websocket error: {ws.exception()}")
                if frame.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    packet = json.loads(frame.data)
                except json.JSONDecodeError:
                    logger.warning("Dropping malformed stream frame")
                    continue
                event = parse_channel_packet(packet, channel_id)
                if event is not None:
                    yield event
        self._ws = None


def parse_channel_packet(packet: Any, channel_id: str) -> StreamEvent | None:
    if not isinstance(packet, dict) or packet.get("type") != "channel":
        return None
    body = packet.get("body")
    if not isinstance(body, dict) or body.get("id") != channel_id:
        return None
    event_type = body.get("type")
    payload = body.get("body")
    if not isinstance(event_type, str) or not isinstance(payload, dict):
        return None
    return event_type, payload
