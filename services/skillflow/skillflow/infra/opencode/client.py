"""OpenCode 异步 HTTP 客户端：封装会话创建、提示词投递、状态查询、消息读取与中止接口。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx


@dataclass(slots=True)
class OpenCodeCredentials:
    """OpenCode 服务认证凭据对象。"""
    username: str
    password: str | None


logger = logging.getLogger(__name__)


class OpenCodeClient:
    """OpenCode 异步 HTTP 客户端封装，支持 async with 管理连接池。"""
    def __init__(
        self,
        base_url: str,
        credentials: OpenCodeCredentials,
        timeout_seconds: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._closed = False
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            auth=self._auth(),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            transport=transport,
        )

    async def __aenter__(self) -> "OpenCodeClient":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    def _auth(self) -> tuple[str, str] | None:
        """根据凭据构造 HTTP 基础认证参数。"""
        # 仅在配置了密码时启用基础认证，兼容无鉴权的本地开发环境。
        if self._credentials.password:
            return self._credentials.username, self._credentials.password
        return None

    def _client_or_raise(self) -> httpx.AsyncClient:
        if self._closed:
            raise RuntimeError("OpenCodeClient is already closed")
        return self._client

    @staticmethod
    def _params(directory: Path | None, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if directory is not None:
            params["directory"] = str(directory)
        if extra:
            params.update(extra)
        return params

    async def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        await self._client.aclose()
        self._closed = True

    async def _request(
        self,
        *,
        method: str,
        path: str,
        op: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """发送 HTTP 请求并记录结构化日志。"""
        started = time.perf_counter()
        try:
            response = await self._client_or_raise().request(method, path, params=params, json=json_body)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            status_code = None
            if isinstance(exc, httpx.HTTPStatusError):
                status_code = exc.response.status_code
            logger.error(
                "opencode request failed",
                extra={
                    "event": "opencode.request.failed",
                    "op": op,
                    "duration_ms": duration_ms,
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "detail": detail,
                },
            )
            raise
        logger.debug(
            "opencode request completed",
            extra={
                "event": "opencode.request.completed",
                "op": op,
                "duration_ms": duration_ms,
                "status_code": response.status_code,
                "detail": detail,
            },
        )
        return response

    async def health(self) -> dict[str, Any]:
        response = await self._request(method="GET", path="/global/health", op="global.health")
        return response.json()

    async def create_session(self, directory: Path | None, title: str = "skillflow-task") -> str:
        """创建新会话并返回 session_id。"""
        response = await self._request(
            method="POST",
            path="/session",
            op="session.create",
            params=self._params(directory),
            json_body={"title": title},
            detail={"title": title},
        )
        payload = response.json()
        session_id = payload.get("id") or payload.get("sessionID")
        if not session_id:
            raise RuntimeError("missing session id from OpenCode response")
        return str(session_id)

    async def prompt_async(
        self,
        *,
        directory: Path | None,
        session_id: str,
        prompt: str,
        agent: str,
        model: dict[str, str] | None = None,
    ) -> None:
        """向指定会话异步发送 prompt。"""
        request_body: dict[str, Any] = {
            "agent": agent,
            "parts": [{"type": "text", "text": prompt}],
        }
        if model:
            request_body["model"] = {"providerID": model["providerID"], "modelID": model["modelID"]}
        await self._request(
            method="POST",
            path=f"/session/{session_id}/prompt_async",
            op="session.prompt_async",
            params=self._params(directory),
            json_body=request_body,
            detail={"session_id": session_id, "agent": agent, "prompt_chars": len(prompt)},
        )

    async def get_session_status(self, directory: Path | None) -> dict[str, Any]:
        response = await self._request(
            method="GET",
            path="/session/status",
            op="session.status",
            params=self._params(directory),
        )
        return response.json()

    async def get_last_message(self, directory: Path | None, session_id: str, limit: int = 1) -> list[dict[str, Any]]:
        response = await self._request(
            method="GET",
            path=f"/session/{session_id}/message",
            op="session.last_message",
            params=self._params(directory, {"limit": limit}),
            detail={"session_id": session_id, "limit": limit},
        )
        return list(response.json())

    async def abort_session(self, directory: Path | None, session_id: str) -> None:
        """主动中止 OpenCode 会话执行。"""
        await self._request(
            method="POST",
            path=f"/session/{session_id}/abort",
            op="session.abort",
            params=self._params(directory),
            detail={"session_id": session_id},
        )
