"""Messaging channels."""

from __future__ import annotations

from typing import TYPE_CHECKING

from channels_bridge.presentation.channels.base import (
    Channel,
    format_permission_message,
    parse_response,
)
from channels_bridge.presentation.channels.telegram import (
    CursorStore,
    TelegramAPIError,
    TelegramChannel,
)

if TYPE_CHECKING:
    from channels_bridge.infrastructure.config import Config

__all__ = [
    "Channel",
    "ConfigurationError",
    "CursorStore",
    "TelegramAPIError",
    "TelegramChannel",
    "create_channel",
    "format_permission_message",
    "parse_response",
]


class ConfigurationError(Exception):
    """チャネルの設定が不足している、または未実装のチャネルが選択された場合の例外."""


def create_channel(config: Config, cursor_store: CursorStore | None = None) -> Channel:
    """
    設定で選択されたチャネルを作成する.

    Args:
        config: アプリケーション設定
        cursor_store: 受信位置の保存先

    Returns:
        チャネル

    Raises:
        ConfigurationError: 認証情報がない、または未実装のチャネルの場合
    """
    if config.default_channel == "telegram":
        if config.telegram is None:
            msg = "Telegram config required when default_channel is telegram"
            raise ConfigurationError(msg)
        return TelegramChannel(config.telegram, cursor_store=cursor_store)

    if config.default_channel in ("slack", "discord"):
        msg = f"{config.default_channel.capitalize()} channel not yet implemented"
        raise ConfigurationError(msg)

    msg = f"Unknown channel: {config.default_channel}"
    raise ConfigurationError(msg)
