"""Permission request orchestration."""

from __future__ import annotations

import asyncio
import secrets
import string
import time
from typing import TYPE_CHECKING, Any

import httpx

from channels_bridge.application.formatting import escape_markdown
from channels_bridge.application.models import (
    ALLOW,
    DENY,
    ChannelError,
    Decision,
    PermissionRequest,
)
from channels_bridge.application.pending import (
    DeliveryTimeoutError,
    PendingRequestError,
    PendingRequestStore,  # noqa: TC001
    PermissionTimeoutError,
)
from channels_bridge.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from channels_bridge.presentation.channels.base import Channel

logger = get_logger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase

# 送信失敗時の再試行間隔（秒）。チャネルの受信ループと同じ固定値
SEND_RETRY_DELAY = 5.0

# 一時的な送信失敗として再試行する例外
_TRANSIENT_SEND_ERRORS = (httpx.HTTPError, ChannelError)


def generate_request_id() -> str:
    """`perm_<epochミリ秒>_<英数字7文字>` 形式のリクエストIDを生成する."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"perm_{int(time.time() * 1000)}_{suffix}"


def format_decision_message(tool: str, decision: Decision) -> str:
    """決定後のメッセージ本文."""
    if decision == ALLOW:
        header = "✅ *Permission Granted*"
    elif decision == DENY:
        header = "❌ *Permission Denied*"
    else:
        header = "💬 *Permission Responded*"
    return f"{header}\n\nTool: `{tool}`\nResponse: {escape_markdown(decision)}"


def format_unresolved_message(
    tool: str, error: PendingRequestError | None = None
) -> str:
    """決定に至らなかった場合のメッセージ本文（error=None は待ち手の離脱）."""
    if isinstance(error, PermissionTimeoutError):
        return f"⏱️ *Permission Timeout*\n\nTool: `{tool}`\nNo response received."
    return f"🚫 *Permission Cancelled*\n\nTool: `{tool}`\nThe bridge stopped waiting."


class PermissionService:
    """
    パーミッション要求をチャネルに送り、人間の決定を待つ.

    チャネルの応答通知を購読し、PendingRequestStore の該当要求を完了させる.
    """

    def __init__(
        self,
        channel: Channel,
        store: PendingRequestStore,
        *,
        retry_delay: float = SEND_RETRY_DELAY,
    ) -> None:
        """
        Initialize PermissionService.

        Args:
            channel: 送信先チャネル
            store: 応答待ちストア
            retry_delay: 送信失敗時の再試行間隔（秒）
        """
        self._channel = channel
        self._store = store
        self._retry_delay = retry_delay
        self._channel.on_response(self._handle_response)

    async def handle_permission_request(
        self,
        tool: str,
        args: Any,
        session_id: str,
        description: str | None = None,
    ) -> Decision:
        """
        パーミッション要求を送信し、決定を返す.

        Args:
            tool: ツール名
            args: ツール引数
            session_id: 要求元のセッションID
            description: 補足説明

        Returns:
            決定（"allow" / "deny" / 自由文）

        Raises:
            PermissionTimeoutError: 時間内に応答がなかった場合
                （送信できなかった場合は DeliveryTimeoutError）
            StoreClearedError: 応答待ちが打ち切られた場合
        """
        request = PermissionRequest(
            id=generate_request_id(),
            session_id=session_id,
            tool=tool,
            args=args,
            timestamp=time.time(),
            description=description,
        )
        logger.info(
            "Handling permission request",
            request_id=request.id,
            session_id=session_id,
            tool=tool,
        )

        message_id = await self._send_with_retry(request)
        # send から register までの間に await を挟まない（応答の取りこぼし防止）
        future = self._store.register(request, message_id)

        try:
            decision = await future
        except PendingRequestError as e:
            logger.warning(
                "Permission request unresolved",
                request_id=request.id,
                reason=type(e).__name__,
            )
            await self._channel.update_message(
                message_id, format_unresolved_message(tool, e)
            )
            raise
        except asyncio.CancelledError:
            self._store.discard(request.id)
            await self._finalize_cancelled(message_id, tool)
            raise

        await self._channel.update_message(
            message_id, format_decision_message(tool, decision)
        )
        logger.info(
            "Permission request resolved",
            request_id=request.id,
            decision=decision if decision in (ALLOW, DENY) else "custom",
        )
        return decision

    async def _send_with_retry(self, request: PermissionRequest) -> str:
        """
        一時的な失敗を固定間隔で再試行しながら要求を送信する.

        再試行は応答待ちと同じ時間で打ち切る.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._store.timeout
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._channel.send_permission_request(request)
            except _TRANSIENT_SEND_ERRORS as e:
                if loop.time() + self._retry_delay > deadline:
                    logger.error(
                        "Giving up delivering permission request",
                        request_id=request.id,
                        attempts=attempt,
                    )
                    raise DeliveryTimeoutError(
                        request.id, self._store.timeout
                    ) from e
                logger.warning(
                    "Failed to deliver permission request, retrying",
                    request_id=request.id,
                    attempt=attempt,
                    retry_delay=self._retry_delay,
                    error=str(e),
                )
                await asyncio.sleep(self._retry_delay)

    async def _finalize_cancelled(self, message_id: str, tool: str) -> None:
        # 待ち手が消えても対応表を残さないよう、メッセージを終端状態にする
        try:
            await self._channel.update_message(
                message_id, format_unresolved_message(tool)
            )
        except Exception:
            logger.warning(
                "Failed to finalize cancelled request",
                message_id=message_id,
                exc_info=True,
            )

    def _handle_response(self, request_id: str, decision: Decision) -> bool:
        if self._store.resolve(request_id, decision):
            return True
        logger.debug(
            "Response for request that is no longer pending",
            request_id=request_id,
        )
        return False
