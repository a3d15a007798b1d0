"""Remote command dispatcher for inbound channel traffic."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

from channels_bridge.application.formatting import escape_markdown
from channels_bridge.application.models import (
    ChannelMessage,
    InboundEvent,  # noqa: TC001
)
from channels_bridge.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from channels_bridge.infrastructure.host_client import HostSession
    from channels_bridge.infrastructure.state import StateStore
    from channels_bridge.presentation.channels.base import Channel

logger = get_logger(__name__)

COMMAND_PREFIX = "/"

# /list で表示する件数とID表示桁数
RECENT_SESSION_LIMIT = 5
SHORT_ID_LENGTH = 8

HELP_TEXT = "\n".join(
    [
        "*Commands*",
        "",
        "`/list` - list recent sessions",
        "`/use <sessionId>` - set active session",
        "`/status` - show current status",
        "`/help` - show this message",
        "",
        "Any other text is sent as a prompt to the active session.",
    ]
)


class HostSessions(Protocol):
    """ホストのセッションAPI."""

    async def list_sessions(self) -> list[HostSession]: ...

    async def prompt(self, session_id: str, text: str) -> None: ...


class RemoteController:
    """
    要求に紐づかない受信メッセージを処理する.

    `/` で始まるテキストはコマンドとして実行し、それ以外はアクティブセッションへ
    プロンプトとして転送する。イベントはチャネルのディスパッチループから
    1件ずつ渡されるため、アクティブセッションの更新に排他は不要.
    """

    def __init__(
        self,
        channel: Channel,
        host: HostSessions,
        state: StateStore,
        *,
        enabled: bool = True,
    ) -> None:
        """
        Initialize RemoteController.

        Args:
            channel: 応答の送信先チャネル
            host: ホストのセッションAPI
            state: アクティブセッションを永続化するストア
            enabled: リモート操作の初期状態
        """
        self._channel = channel
        self._host = host
        self._state = state
        self._enabled = enabled
        self._commands: dict[str, Callable[[list[str]], Awaitable[None]]] = {
            "help": self._cmd_help,
            "start": self._cmd_help,
            "status": self._cmd_status,
            "list": self._cmd_list,
            "use": self._cmd_use,
        }

    @property
    def enabled(self) -> bool:
        """リモート操作が有効かどうか."""
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """リモート操作の有効/無効を切り替えて永続化する."""
        self._enabled = enabled
        self._state.set_enabled(enabled)

    @property
    def active_session_id(self) -> str | None:
        """アクティブセッションID."""
        return self._state.get_active_session_id()

    async def handle_incoming(self, event: InboundEvent) -> None:
        """
        受信イベントを処理する.

        Args:
            event: 受信イベント
        """
        if not self._enabled:
            return

        text = (event.text or "").strip()
        if not text:
            return

        if text.startswith(COMMAND_PREFIX):
            await self._handle_command(text[len(COMMAND_PREFIX) :])
            return

        session_id = self.active_session_id
        if session_id is None:
            await self._reply("No active session. Use `/list` then `/use <sessionId>`.")
            return

        try:
            await self._host.prompt(session_id, text)
        except Exception as e:
            logger.exception("Failed to forward prompt", session_id=session_id)
            await self._reply(
                f"❌ Failed to send message: {escape_markdown(str(e))}"
            )

    async def _handle_command(self, raw: str) -> None:
        parts = raw.split()
        if not parts:
            await self._reply("Unknown command. Use `/help`.")
            return

        # Telegram のグループでは /list@BotName の形で届く
        command = parts[0].split("@", 1)[0].lower()
        handler = self._commands.get(command)
        if handler is None:
            await self._reply("Unknown command. Use `/help`.")
            return

        logger.info("Handling remote command", command=command)
        await handler(parts[1:])

    async def _cmd_help(self, args: list[str]) -> None:
        await self._reply(HELP_TEXT)

    async def _cmd_status(self, args: list[str]) -> None:
        await self._reply(self.format_status())

    def format_status(self) -> str:
        """ステータス表示の本文."""
        return "\n".join(
            [
                "*Channels Status*",
                "",
                f"Enabled: `{'yes' if self._enabled else 'no'}`",
                f"Active session: `{self.active_session_id or 'none'}`",
            ]
        )

    async def _cmd_list(self, args: list[str]) -> None:
        sessions = await self._list_sessions()
        if sessions is None:
            return

        recent = sorted(sessions, key=lambda s: s.updated, reverse=True)
        recent = recent[:RECENT_SESSION_LIMIT]
        if not recent:
            await self._reply("No sessions found.")
            return

        active = self.active_session_id
        lines = ["*Recent Sessions*"]
        for session in recent:
            suffix = " (active)" if session.id == active else ""
            lines.append(
                f"`{session.id[:SHORT_ID_LENGTH]}` - "
                f"{escape_markdown(session.title or 'Untitled')}{suffix}"
            )
        lines.extend(["", "Use `/use <sessionId>` to select."])
        await self._reply("\n".join(lines))

    async def _cmd_use(self, args: list[str]) -> None:
        if not args:
            await self._reply("Usage: `/use <sessionId>`")
            return

        prefix = args[0]
        sessions = await self._list_sessions()
        if sessions is None:
            return

        matches = [s for s in sessions if s.id.startswith(prefix)]
        if not matches:
            await self._reply("Session not found. Use `/list` to see recent sessions.")
            return
        if len(matches) > 1:
            await self._reply("Multiple matches. Use a longer session ID prefix.")
            return

        session = matches[0]
        self._state.set_active_session_id(session.id)
        logger.info("Active session changed", session_id=session.id)
        await self._reply(
            f"Active session set to `{session.id[:SHORT_ID_LENGTH]}`"
        )

    async def _list_sessions(self) -> list[HostSession] | None:
        try:
            return await self._host.list_sessions()
        except Exception as e:
            logger.exception("Failed to list host sessions")
            await self._reply(
                f"❌ Failed to list sessions: {escape_markdown(str(e))}"
            )
            return None

    async def _reply(self, text: str) -> None:
        try:
            await self._channel.send(ChannelMessage(text=text, parse_mode="Markdown"))
        except Exception:
            logger.exception("Failed to send reply", text_preview=text[:50])
