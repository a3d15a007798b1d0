"""Channel capability interface and shared helpers."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

from channels_bridge.application.formatting import escape_markdown
from channels_bridge.application.models import ALLOW, DENY, Decision

if TYPE_CHECKING:
    from channels_bridge.application.models import (
        ChannelMessage,
        InboundEvent,
        PermissionRequest,
    )

# コールバック型定義
# (request_id, decision) -> 応答待ちの要求を完了させた場合True
ResponseCallback = Callable[[str, Decision], bool]
IncomingCallback = Callable[["InboundEvent"], Awaitable[None]]

# チャネルのメッセージサイズ制限に収めるための上限
MAX_ARGS_LENGTH = 500

_ALLOW_WORDS = frozenset({"allow", "yes", "y", "✅"})
_DENY_WORDS = frozenset({"deny", "no", "n", "❌"})


class Channel(Protocol):
    """メッセージングバックエンドが実装する操作."""

    name: str

    async def start(self) -> None:
        """受信ループを開始する（呼び出し元はブロックしない）."""
        ...

    async def stop(self) -> None:
        """受信ループを停止する."""
        ...

    async def send(self, message: ChannelMessage) -> None:
        """メッセージを送信する."""
        ...

    async def send_permission_request(self, request: PermissionRequest) -> str:
        """パーミッション要求を送信し、チャネル上のメッセージIDを返す."""
        ...

    async def update_message(self, message_id: str, content: str) -> None:
        """送信済みメッセージを最終状態に書き換える（best-effort）."""
        ...

    def on_response(self, callback: ResponseCallback) -> None:
        """パーミッション要求への応答を購読する."""
        ...

    def on_incoming(self, callback: IncomingCallback) -> None:
        """要求に紐づかない受信イベントを購読する."""
        ...


def truncate(text: str, limit: int = MAX_ARGS_LENGTH) -> str:
    """limit文字を超える場合は切り詰めて `...` を付ける."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_args(args: object) -> str:
    """ツール引数を表示用の文字列にする（文字列はそのまま、それ以外はJSON）."""
    if isinstance(args, str):
        return args
    return json.dumps(args, indent=2, ensure_ascii=False, default=str)


def format_permission_message(request: PermissionRequest) -> str:
    """
    パーミッション要求のメッセージ本文を組み立てる.

    Args:
        request: パーミッション要求

    Returns:
        Markdown形式の本文
    """
    lines = [
        "🔔 *Permission Required*",
        "",
        f"*Tool:* `{request.tool}`",
    ]
    if request.description:
        lines.append(escape_markdown(str(request.description)))
    lines.extend(
        [
            "",
            "```",
            truncate(format_args(request.args)),
            "```",
            "",
            "_Reply: ✅ allow | ❌ deny | custom text_",
        ]
    )
    return "\n".join(lines)


def parse_response(text: str) -> Decision:
    """
    人間の返信・ボタンのペイロードを決定に正規化する.

    大文字小文字は区別しない。allow/yes/y/✅ は allow、deny/no/n/❌ は deny、
    それ以外は前後の空白を除いた原文をそのまま返す.

    Args:
        text: 返信テキストまたはボタンのペイロード

    Returns:
        決定
    """
    normalized = text.strip().lower()
    if normalized in _ALLOW_WORDS:
        return ALLOW
    if normalized in _DENY_WORDS:
        return DENY
    return text.strip()
