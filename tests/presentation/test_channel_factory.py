"""Tests for channel selection."""

from __future__ import annotations

import pytest

from channels_bridge.infrastructure.config import Config, TelegramConfig
from channels_bridge.presentation.channels import (
    ConfigurationError,
    TelegramChannel,
    create_channel,
)


class TestCreateChannel:
    """create_channel のテスト."""

    @pytest.mark.asyncio
    async def test_telegram(self) -> None:
        """Telegram設定があればTelegramChannelが作られることを確認する."""
        config = Config(
            _env_file=None,
            telegram=TelegramConfig(bot_token="123:abc", chat_id="100"),
        )

        channel = create_channel(config)

        assert isinstance(channel, TelegramChannel)
        assert channel.name == "telegram"
        await channel.stop()

    def test_telegram_without_credentials(self) -> None:
        """Telegram設定がなければ ConfigurationError になることを確認する."""
        config = Config(_env_file=None, telegram=None)

        with pytest.raises(ConfigurationError, match="Telegram config required"):
            create_channel(config)

    @pytest.mark.parametrize(
        ("name", "message"),
        [
            ("slack", "Slack channel not yet implemented"),
            ("discord", "Discord channel not yet implemented"),
        ],
    )
    def test_unimplemented(self, name: str, message: str) -> None:
        """未実装のチャネルは ConfigurationError になることを確認する."""
        config = Config(_env_file=None, default_channel=name)

        with pytest.raises(ConfigurationError, match=message):
            create_channel(config)
