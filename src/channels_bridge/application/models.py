"""Data models for cross-layer communication."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

# パーミッションへの応答。"allow" / "deny" 以外は人間が書いた自由文
Decision = str

ALLOW: Decision = "allow"
DENY: Decision = "deny"


@dataclass(frozen=True)
class MessageButton:
    """メッセージに付けるインラインボタン."""

    text: str
    callback_data: str


@dataclass(frozen=True)
class ChannelMessage:
    """チャネルへ送信するメッセージ."""

    text: str
    parse_mode: Literal["Markdown", "HTML"] | None = None
    buttons: tuple[MessageButton, ...] = ()


@dataclass(frozen=True)
class PermissionRequest:
    """パーミッション要求（Orchestrator → Channel）."""

    id: str
    session_id: str
    tool: str
    args: Any
    timestamp: float
    description: str | None = None


class InboundEventKind(str, Enum):
    """受信イベントの種別."""

    MESSAGE = "message"  # 返信先なしのテキスト
    REPLY = "reply"  # 送信済みメッセージへの返信
    CALLBACK = "callback"  # ボタン押下


@dataclass(frozen=True)
class InboundEvent:
    """チャネルから受信したイベントを正規化したもの."""

    kind: InboundEventKind
    chat_id: str
    text: str | None = None
    target_message_id: str | None = None
    data: str | None = None
    callback_id: str | None = None
    update_id: int | None = None


class NotificationKind(str, Enum):
    """通知イベントの種別."""

    COMPLETE = "complete"
    ERROR = "error"
    IDLE = "idle"


@dataclass(frozen=True)
class NotificationEvent:
    """通知イベント（ホスト → Notification Emitter）."""

    kind: NotificationKind
    message: str
    session_id: str | None = None
    details: str | None = None


class ChannelError(Exception):
    """チャネルのバックエンドが送信を拒否した場合の基底例外."""
