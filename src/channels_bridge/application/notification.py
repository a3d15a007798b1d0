"""Notification emitter."""

from __future__ import annotations

from typing import TYPE_CHECKING

from channels_bridge.application.models import (
    ChannelMessage,
    NotificationEvent,
    NotificationKind,
)
from channels_bridge.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from channels_bridge.infrastructure.config import NotificationsConfig
    from channels_bridge.presentation.channels.base import Channel

logger = get_logger(__name__)

# 詳細テキストの上限（チャネルのメッセージサイズ制限対策）
MAX_DETAILS_LENGTH = 500

_ICONS: dict[NotificationKind, str] = {
    NotificationKind.COMPLETE: "✅",
    NotificationKind.ERROR: "❌",
    NotificationKind.IDLE: "💤",
}


def format_notification(event: NotificationEvent) -> str:
    """通知メッセージの本文を組み立てる."""
    icon = _ICONS.get(event.kind, "📢")
    lines = [f"{icon} *{event.message}*"]

    if event.session_id:
        lines.append(f"Session: `{event.session_id[:8]}...`")

    if event.details:
        lines.extend(["", "```", event.details[:MAX_DETAILS_LENGTH], "```"])

    return "\n".join(lines)


class NotificationService:
    """セッションの状態変化をチャネルに通知する（送りっぱなし）."""

    def __init__(self, channel: Channel, config: NotificationsConfig) -> None:
        """
        Initialize NotificationService.

        Args:
            channel: 送信先チャネル
            config: 種別ごとの通知設定
        """
        self._channel = channel
        self._config = config

    def should_notify(self, kind: NotificationKind) -> bool:
        """指定種別の通知が有効かどうか."""
        if kind == NotificationKind.COMPLETE:
            return self._config.on_complete
        if kind == NotificationKind.ERROR:
            return self._config.on_error
        if kind == NotificationKind.IDLE:
            return self._config.on_idle
        return False

    async def notify(self, event: NotificationEvent) -> bool:
        """
        通知を送信する.

        送信失敗はログに記録するのみで呼び出し元には伝えない.

        Args:
            event: 通知イベント

        Returns:
            送信した場合True
        """
        if not self.should_notify(event.kind):
            logger.debug("Notification disabled", kind=event.kind.value)
            return False

        try:
            await self._channel.send(
                ChannelMessage(text=format_notification(event), parse_mode="Markdown")
            )
        except Exception:
            logger.exception(
                "Failed to send notification",
                kind=event.kind.value,
                session_id=event.session_id,
            )
            return False

        logger.info(
            "Sent notification", kind=event.kind.value, session_id=event.session_id
        )
        return True

    async def notify_complete(
        self, session_id: str, summary: str | None = None
    ) -> bool:
        """タスク完了を通知する."""
        return await self.notify(
            NotificationEvent(
                kind=NotificationKind.COMPLETE,
                message="Task completed",
                session_id=session_id,
                details=summary,
            )
        )

    async def notify_error(self, session_id: str, error: str) -> bool:
        """エラーを通知する."""
        return await self.notify(
            NotificationEvent(
                kind=NotificationKind.ERROR,
                message="Error occurred",
                session_id=session_id,
                details=error,
            )
        )

    async def notify_idle(self, session_id: str) -> bool:
        """セッションのアイドルを通知する."""
        return await self.notify(
            NotificationEvent(
                kind=NotificationKind.IDLE,
                message="Session idle",
                session_id=session_id,
            )
        )
