"""Pending permission request store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from channels_bridge.application.models import (
    Decision,  # noqa: TC001
    PermissionRequest,  # noqa: TC001
)
from channels_bridge.infrastructure.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 300.0


class PendingRequestError(Exception):
    """パーミッション要求が決定に至らなかった場合の基底例外."""

    def __init__(self, request_id: str, message: str) -> None:
        """
        Initialize PendingRequestError.

        Args:
            request_id: 対象のリクエストID
            message: エラーメッセージ
        """
        super().__init__(message)
        self.request_id = request_id


class PermissionTimeoutError(PendingRequestError):
    """時間内に応答がなかった場合の例外."""

    def __init__(self, request_id: str, timeout: float) -> None:
        """
        Initialize PermissionTimeoutError.

        Args:
            request_id: 対象のリクエストID
            timeout: 待機した秒数
        """
        super().__init__(request_id, f"Permission request timeout: {request_id}")
        self.timeout = timeout


class DeliveryTimeoutError(PermissionTimeoutError):
    """待ち時間内にパーミッション要求をチャネルへ送れなかった場合の例外."""

    def __init__(self, request_id: str, timeout: float) -> None:
        """
        Initialize DeliveryTimeoutError.

        Args:
            request_id: 対象のリクエストID
            timeout: 送信を試み続けた秒数
        """
        PendingRequestError.__init__(
            self, request_id, f"Permission request could not be delivered: {request_id}"
        )
        self.timeout = timeout


class StoreClearedError(PendingRequestError):
    """ストアがクリアされ、応答待ちが打ち切られた場合の例外."""

    def __init__(self, request_id: str) -> None:
        """
        Initialize StoreClearedError.

        Args:
            request_id: 対象のリクエストID
        """
        super().__init__(request_id, "Store cleared")


@dataclass
class PendingRequest:
    """応答待ちのパーミッション要求."""

    id: str
    session_id: str
    message_id: str
    tool: str
    args: Any
    timestamp: float
    future: asyncio.Future[Decision] = field(repr=False)
    deadline: float = 0.0
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class PendingRequestStore:
    """
    応答待ちのパーミッション要求を管理するストア.

    各要求は1回だけ完了する（応答 or タイムアウト or クリア）。
    イベントループ上でのみ操作されるため、辞書からの削除とFutureの完了の間に
    他の処理が割り込むことはない.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        """
        Initialize PendingRequestStore.

        Args:
            timeout: 応答待ちの秒数
        """
        self.timeout = timeout
        self._requests: dict[str, PendingRequest] = {}

    def register(
        self, request: PermissionRequest, message_id: str
    ) -> asyncio.Future[Decision]:
        """
        要求を登録し、決定を待つFutureを返す.

        Args:
            request: パーミッション要求
            message_id: チャネル上のメッセージID

        Returns:
            決定で完了するFuture。タイムアウト時は PermissionTimeoutError で失敗する

        Raises:
            ValueError: 同じIDの要求が既に登録されている場合
        """
        if request.id in self._requests:
            msg = f"Request already pending: {request.id}"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            id=request.id,
            session_id=request.session_id,
            message_id=message_id,
            tool=request.tool,
            args=request.args,
            timestamp=request.timestamp,
            future=loop.create_future(),
        )
        pending.deadline = loop.time() + self.timeout
        pending.timer = loop.call_at(pending.deadline, self._on_timer, request.id)
        self._requests[request.id] = pending

        logger.debug(
            "Registered pending request",
            request_id=request.id,
            message_id=message_id,
            timeout=self.timeout,
        )
        return pending.future

    def resolve(self, request_id: str, decision: Decision) -> bool:
        """
        要求を決定で完了させる.

        Args:
            request_id: リクエストID
            decision: 決定

        Returns:
            完了させた場合True。既に完了済み・未登録の場合False
        """
        pending = self._pop(request_id)
        if pending is None:
            logger.debug("Resolve for unknown request", request_id=request_id)
            return False

        if not pending.future.done():
            pending.future.set_result(decision)
        logger.info("Resolved pending request", request_id=request_id)
        return True

    def reject(self, request_id: str, error: Exception) -> bool:
        """
        要求を例外で完了させる.

        Args:
            request_id: リクエストID
            error: Futureに設定する例外

        Returns:
            完了させた場合True。既に完了済み・未登録の場合False
        """
        pending = self._pop(request_id)
        if pending is None:
            return False

        if not pending.future.done():
            pending.future.set_exception(error)
        return True

    def discard(self, request_id: str) -> bool:
        """
        待ち手がいなくなった要求を取り除く（Futureはキャンセルする）.

        Args:
            request_id: リクエストID

        Returns:
            取り除いた場合True
        """
        pending = self._pop(request_id)
        if pending is None:
            return False

        pending.future.cancel()
        logger.debug("Discarded pending request", request_id=request_id)
        return True

    def _on_timer(self, request_id: str) -> None:
        pending = self._requests.get(request_id)
        if pending is None:
            return

        # call_at はクロック分解能の分だけ早く発火することがある
        loop = asyncio.get_running_loop()
        remaining = pending.deadline - loop.time()
        if remaining > 0:
            pending.timer = loop.call_later(remaining, self._on_timer, request_id)
            return

        self._expire(request_id)

    def _expire(self, request_id: str) -> bool:
        """まだ残っていればタイムアウトで失敗させる。解決済みなら何もしない."""
        expired = self.reject(
            request_id, PermissionTimeoutError(request_id, self.timeout)
        )
        if expired:
            logger.warning(
                "Pending request timed out",
                request_id=request_id,
                timeout=self.timeout,
            )
        return expired

    def _pop(self, request_id: str) -> PendingRequest | None:
        pending = self._requests.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending

    def get(self, request_id: str) -> PendingRequest | None:
        """登録中の要求を返す."""
        return self._requests.get(request_id)

    def has(self, request_id: str) -> bool:
        """要求が応答待ちかどうか."""
        return request_id in self._requests

    def get_all(self) -> list[PendingRequest]:
        """応答待ちの要求一覧."""
        return list(self._requests.values())

    def __len__(self) -> int:
        return len(self._requests)

    def clear(self) -> None:
        """すべての応答待ちを StoreClearedError で失敗させる."""
        request_ids = list(self._requests)
        for request_id in request_ids:
            self.reject(request_id, StoreClearedError(request_id))

        if request_ids:
            logger.info("Cleared pending requests", count=len(request_ids))
