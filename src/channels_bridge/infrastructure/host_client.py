"""HTTP client for the host's session API."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from channels_bridge.infrastructure.logging import get_logger

logger = get_logger(__name__)

# プロンプト送信はホスト側の応答生成を待つため長めに取る
PROMPT_TIMEOUT = 600.0
DEFAULT_TIMEOUT = 10.0


class HostAPIError(Exception):
    """ホストのセッションAPI呼び出しに失敗した場合の例外."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """
        Initialize HostAPIError.

        Args:
            message: エラーメッセージ
            status_code: HTTPステータス（通信エラーの場合はNone）
        """
        super().__init__(message)
        self.status_code = status_code


class SessionTime(BaseModel):
    """セッションのタイムスタンプ（epochミリ秒）."""

    created: float = 0
    updated: float = 0


class HostSession(BaseModel):
    """ホストのセッション情報."""

    id: str
    title: str = ""
    time: SessionTime = Field(default_factory=SessionTime)

    @property
    def updated(self) -> float:
        """最終更新時刻."""
        return self.time.updated


class HostClient:
    """ホストのセッション一覧取得とプロンプト送信を行うクライアント."""

    def __init__(
        self,
        base_url: str,
        directory: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize HostClient.

        Args:
            base_url: ホストAPIのベースURL
            directory: 対象プロジェクトのディレクトリ（クエリとして渡す）
            transport: テスト用のトランスポート
        """
        self._directory = directory
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    def _params(self) -> dict[str, str]:
        if self._directory:
            return {"directory": self._directory}
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, params=self._params(), json=json, timeout=timeout
            )
        except httpx.HTTPError as e:
            raise HostAPIError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise HostAPIError(
                f"{method} {path} returned {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def list_sessions(self) -> list[HostSession]:
        """
        セッション一覧を取得する.

        Returns:
            セッション一覧（ホストが返した順）

        Raises:
            HostAPIError: 取得に失敗した場合
        """
        response = await self._request("GET", "/session")
        try:
            data = response.json()
            if not isinstance(data, list):
                msg = "session list must be a JSON array"
                raise ValueError(msg)
            sessions = [HostSession.model_validate(item) for item in data]
        except (ValueError, ValidationError) as e:
            raise HostAPIError(f"Invalid session list: {e}") from e

        logger.debug("Listed host sessions", session_count=len(sessions))
        return sessions

    async def prompt(self, session_id: str, text: str) -> None:
        """
        セッションにプロンプトを送信する.

        Args:
            session_id: 送信先セッションID
            text: プロンプト本文

        Raises:
            HostAPIError: 送信に失敗した場合
        """
        logger.info(
            "Sending prompt to host session",
            session_id=session_id,
            content_preview=text[:50],
        )
        await self._request(
            "POST",
            f"/session/{session_id}/message",
            json={"parts": [{"type": "text", "text": text}]},
            timeout=PROMPT_TIMEOUT,
        )

    async def close(self) -> None:
        """HTTPクライアントを閉じる."""
        await self._client.aclose()
