from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Dict

import aiohttp


class MisskeyApiError(RuntimeError):
    def __init__(self, endpoint: str, status: int, body: str) -> None:
        super().__init__(f"Misskey error {status} on {endpoint}: {body}")
        self.endpoint = endpoint
        self.status = status
        self.body = body


class MisskeyClient:
    RETRIABLE_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})

    def __init__(self, host: str, token: str, timeout_seconds: int = 30) -> None:
        self.host = host.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self, endpoint: str) -> str:
        return f"{self.host}/api/{endpoint.strip('/')}"

    async def request(self, endpoint: str, params: Dict[str, Any] | None = None, retries: int = 1) -> Any:
        """POST an API call. Returns decoded JSON, or ``None`` for empty (204) responses.

        One attempt by default. Only idempotent reads should pass ``retries > 1``;
        a timed-out ``notes/create`` may still have been posted.
        """
        url = self._endpoint(endpoint)
        payload: Dict[str, Any] = dict(params or {})
        payload["i"] = self.token
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                async with self.session.post(url, json=payload) as response:
                    text = await response.text()
                    if response.status == 204 or (response.status == 200 and not text.strip()):
                        return None
                    if response.status == 200:
                        return json.loads(text)
                    if response.status not in self.RETRIABLE_STATUSES:
                        raise MisskeyApiError(endpoint, response.status, text)
                    last_error = MisskeyApiError(endpoint, response.status, text)
            except asyncio.CancelledError:
                raise
            except MisskeyApiError as exc:
                if exc.status not in self.RETRIABLE_STATUSES:
                    raise
                last_error = exc
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                last_error = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if isinstance(last_error, MisskeyApiError):
            raise last_error
        raise RuntimeError(f"Misskey request {endpoint} failed after {retries} attempt(s): {last_error}")

    async def fetch_account(self) -> Dict[str, Any]:
        return await self.request("i")

    async def show_note(self, note_id: str) -> Dict[str, Any]:
        return await self.request("notes/show", {"noteId": note_id})

    async def create_reaction(self, note_id: str, reaction: str) -> None:
        await self.request("notes/reactions/create", {"noteId": note_id, "reaction": reaction})

    async def read_message(self, message_id: str) -> None:
        await self.request("messaging/messages/read", {"messageId": message_id})

    async def create_note(self, **params: Any) -> Dict[str, Any]:
        res = await self.request("notes/create", params)
        return (res or {}).get("createdNote") or {}

    async def create_message(self, user_id: str, **params: Any) -> Dict[str, Any]:
        return await self.request("messaging/messages/create", {"userId": user_id, **params})

    async def upload_file(
        self,
        content: bytes,
        *,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> Dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("i", self.token)
        form.add_field("file", content, filename=filename, content_type=content_type)
        url = self._endpoint("drive/files/create")
        async with self.session.post(url, data=form) as response:
            text = await response.text()
            if response.status != 200:
                raise MisskeyApiError("drive/files/create", response.status, text)
            return json.loads(text)
