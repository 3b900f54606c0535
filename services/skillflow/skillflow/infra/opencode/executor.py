"""OpenCode 任务执行器：每个工作任务使用独立会话，完成后读取最后一条消息作为结果。"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from skillflow.domain.errors import TaskExecutionError
from skillflow.domain.models import TaskSpec
from skillflow.infra.opencode.client import OpenCodeClient, OpenCodeCredentials

logger = logging.getLogger(__name__)


def render_prompt(payload: Any) -> str:
    """把任务载荷转为提示词文本。"""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("prompt"), str):
        return payload["prompt"]
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)


def extract_message_text(messages: list[dict[str, Any]]) -> str:
    """拼接消息中的全部 text part。"""
    chunks: list[str] = []
    for message in messages:
        for part in message.get("parts") or []:
            if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
                chunks.append(str(part["text"]))
    return "\n".join(chunks).strip()


class OpenCodeTaskExecutor:
    """基于 OpenCode 会话的异步执行器，cancel_signal 置位时中止远端会话。"""
    def __init__(
        self,
        *,
        base_url: str,
        credentials: OpenCodeCredentials,
        agent: str,
        request_timeout_seconds: int = 30,
        poll_interval_seconds: float = 1.0,
        directory: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._credentials = credentials
        self._agent = agent
        self._request_timeout_seconds = request_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._directory = directory
        self._transport = transport

    def _client(self) -> OpenCodeClient:
        # 每个任务独立连接池：Celery 中每轮运行都是新的事件循环。
        return OpenCodeClient(
            base_url=self._base_url,
            credentials=self._credentials,
            timeout_seconds=self._request_timeout_seconds,
            transport=self._transport,
        )

    async def execute(self, spec: TaskSpec, cancel_signal: asyncio.Event) -> str:
        async with self._client() as client:
            session_id: str | None = None
            try:
                session_id = await client.create_session(self._directory, title=f"skillflow-{spec.task_id}")
                await client.prompt_async(
                    directory=self._directory,
                    session_id=session_id,
                    prompt=render_prompt(spec.payload),
                    agent=self._agent,
                )
                await self._wait_until_idle(client, session_id, cancel_signal)
                messages = await client.get_last_message(self._directory, session_id, limit=1)
            except asyncio.CancelledError:
                if session_id is not None:
                    await self._abort(client, session_id)
                raise
            except httpx.HTTPError as exc:
                raise TaskExecutionError("http_error", str(exc)) from exc

        text = extract_message_text(messages)
        if not text:
            raise TaskExecutionError("empty_result", f"session {session_id} returned no text")
        return text

    async def _wait_until_idle(self, client: OpenCodeClient, session_id: str, cancel_signal: asyncio.Event) -> None:
        while True:
            if cancel_signal.is_set():
                await self._abort(client, session_id)
                raise TaskExecutionError("cancelled", "cancel signal received")
            status_map = await client.get_session_status(self._directory)
            session_status = status_map.get(session_id) if isinstance(status_map, dict) else None
            if isinstance(session_status, dict) and session_status.get("type") == "idle":
                return
            try:
                await asyncio.wait_for(cancel_signal.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                continue

    async def _abort(self, client: OpenCodeClient, session_id: str) -> None:
        try:
            await client.abort_session(self._directory, session_id)
        except httpx.HTTPError as exc:
            logger.warning(
                "opencode session abort failed",
                extra={"event": "opencode.session.abort_failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
