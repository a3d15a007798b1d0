"""Tests for the hook socket server."""

from __future__ import annotations

import asyncio
import json
import tempfile
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from channels_bridge.application.pending import (
    DeliveryTimeoutError,
    PermissionTimeoutError,
    StoreClearedError,
)
from channels_bridge.presentation.hook_server import (
    HookServer,
    decision_to_hook_result,
)


@pytest.fixture
def permission_service() -> MagicMock:
    """パーミッション処理のモックを作成する."""
    mock = MagicMock()
    mock.handle_permission_request = AsyncMock(return_value="allow")
    return mock


@pytest.fixture
def notification_service() -> MagicMock:
    """通知処理のモックを作成する."""
    mock = MagicMock()
    mock.notify_complete = AsyncMock(return_value=True)
    mock.notify_error = AsyncMock(return_value=True)
    mock.notify_idle = AsyncMock(return_value=False)
    return mock


@pytest.fixture
def socket_path() -> Iterator[Path]:
    """Unixソケットのパス長制限に収まる一時パスを返す."""
    with tempfile.TemporaryDirectory(prefix="hook") as tmp:
        yield Path(tmp) / "hook.sock"


@pytest.fixture
def server(
    socket_path: Path,
    permission_service: MagicMock,
    notification_service: MagicMock,
) -> HookServer:
    """テスト用のHookServerを作成する."""
    return HookServer(socket_path, permission_service, notification_service)


class TestDecisionToHookResult:
    """decision_to_hook_result のテスト."""

    def test_allow(self) -> None:
        """allowの変換を確認する."""
        assert decision_to_hook_result("allow") == {"status": "allow"}

    def test_deny(self) -> None:
        """denyの変換を確認する."""
        assert decision_to_hook_result("deny") == {"status": "deny"}

    def test_free_text(self) -> None:
        """自由文はdenyと本文になることを確認する."""
        assert decision_to_hook_result("use a dry run first") == {
            "status": "deny",
            "message": "use a dry run first",
        }


class TestHandleRequest:
    """handle_request のテスト."""

    @pytest.mark.asyncio
    async def test_permission_allow(
        self, server: HookServer, permission_service: MagicMock
    ) -> None:
        """パーミッション要求が処理されることを確認する."""
        result = await server.handle_request(
            {
                "type": "permission.ask",
                "tool": "bash",
                "args": {"command": "ls"},
                "session_id": "ses_1",
            }
        )

        assert result == {"status": "allow"}
        permission_service.handle_permission_request.assert_awaited_once_with(
            "bash", {"command": "ls"}, "ses_1", description=None
        )

    @pytest.mark.asyncio
    async def test_permission_disabled(
        self,
        socket_path: Path,
        permission_service: MagicMock,
        notification_service: MagicMock,
    ) -> None:
        """パーミッション通知が無効の場合は判断をホストに委ねることを確認する."""
        server = HookServer(
            socket_path,
            permission_service,
            notification_service,
            ask_permissions=False,
        )

        result = await server.handle_request({"type": "permission.ask", "tool": "x"})

        assert result == {"status": None}
        permission_service.handle_permission_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_permission_timeout(
        self, server: HookServer, permission_service: MagicMock
    ) -> None:
        """タイムアウトは未決定として返ることを確認する."""
        permission_service.handle_permission_request.side_effect = (
            PermissionTimeoutError("perm_1", 300)
        )

        result = await server.handle_request({"type": "permission.ask", "tool": "x"})

        assert result == {"status": None, "message": "No response within 300s"}

    @pytest.mark.asyncio
    async def test_permission_cleared(
        self, server: HookServer, permission_service: MagicMock
    ) -> None:
        """停止による打ち切りは未決定として返ることを確認する."""
        permission_service.handle_permission_request.side_effect = (
            StoreClearedError("perm_1")
        )

        result = await server.handle_request({"type": "permission.ask", "tool": "x"})

        assert result == {"status": None, "message": "Bridge is shutting down"}

    @pytest.mark.asyncio
    async def test_permission_not_delivered(
        self, server: HookServer, permission_service: MagicMock
    ) -> None:
        """チャネルへ送れなかった要求は未決定として返ることを確認する."""
        permission_service.handle_permission_request.side_effect = (
            DeliveryTimeoutError("perm_1", 300)
        )

        result = await server.handle_request({"type": "permission.ask", "tool": "x"})

        assert result == {
            "status": None,
            "message": "Could not deliver request within 300s",
        }

    @pytest.mark.asyncio
    async def test_permission_description_stringified(
        self, server: HookServer, permission_service: MagicMock
    ) -> None:
        """文字列でない補足説明は文字列にして渡されることを確認する."""
        await server.handle_request(
            {
                "type": "permission.ask",
                "tool": "bash",
                "args": {},
                "session_id": "ses_1",
                "description": 123,
            }
        )

        permission_service.handle_permission_request.assert_awaited_once_with(
            "bash", {}, "ses_1", description="123"
        )

    @pytest.mark.asyncio
    async def test_permission_send_failure(
        self, server: HookServer, permission_service: MagicMock
    ) -> None:
        """送信失敗は未決定として返ることを確認する."""
        permission_service.handle_permission_request.side_effect = RuntimeError(
            "network down"
        )

        result = await server.handle_request({"type": "permission.ask", "tool": "x"})

        assert result["status"] is None
        assert "network down" in result["message"]

    @pytest.mark.asyncio
    async def test_notification_complete(
        self, server: HookServer, notification_service: MagicMock
    ) -> None:
        """完了通知が転送されることを確認する."""
        result = await server.handle_request(
            {
                "type": "notification",
                "event": "complete",
                "session_id": "ses_1",
                "details": "done",
            }
        )

        assert result == {"ok": True, "sent": True}
        notification_service.notify_complete.assert_awaited_once_with("ses_1", "done")

    @pytest.mark.asyncio
    async def test_notification_error_default_details(
        self, server: HookServer, notification_service: MagicMock
    ) -> None:
        """詳細のないエラー通知に既定の本文が入ることを確認する."""
        await server.handle_request(
            {"type": "notification", "event": "error", "session_id": "ses_1"}
        )

        notification_service.notify_error.assert_awaited_once_with(
            "ses_1", "Unknown error"
        )

    @pytest.mark.asyncio
    async def test_notification_idle(
        self, server: HookServer, notification_service: MagicMock
    ) -> None:
        """アイドル通知の送信結果が返ることを確認する."""
        result = await server.handle_request(
            {"type": "notification", "event": "idle", "session_id": "ses_1"}
        )

        assert result == {"ok": True, "sent": False}

    @pytest.mark.asyncio
    async def test_unknown_event(self, server: HookServer) -> None:
        """未知の通知種別はエラーになることを確認する."""
        result = await server.handle_request(
            {"type": "notification", "event": "exploded"}
        )

        assert result == {"ok": False, "error": "Unknown event: exploded"}

    @pytest.mark.asyncio
    async def test_invalid_type(self, server: HookServer) -> None:
        """未知の要求種別はエラーになることを確認する."""
        result = await server.handle_request({"type": "unknown"})

        assert result == {"ok": False, "error": "Invalid request type: unknown"}

    @pytest.mark.asyncio
    async def test_not_an_object(self, server: HookServer) -> None:
        """オブジェクトでない要求はエラーになることを確認する."""
        result = await server.handle_request(["permission.ask"])

        assert result["ok"] is False


class TestSocket:
    """ソケット経由のテスト."""

    @pytest.mark.asyncio
    async def test_round_trip(self, server: HookServer, socket_path: Path) -> None:
        """ソケット経由で1行の要求と応答をやり取りできることを確認する."""
        await server.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(socket_path))
            request = {"type": "permission.ask", "tool": "bash", "session_id": "s"}
            writer.write(json.dumps(request).encode() + b"\n")
            await writer.drain()

            line = await asyncio.wait_for(reader.readline(), timeout=2.0)
            writer.close()
            await writer.wait_closed()
        finally:
            await server.stop()

        assert json.loads(line) == {"status": "allow"}
        assert not socket_path.exists()

    @pytest.mark.asyncio
    async def test_invalid_json(self, server: HookServer, socket_path: Path) -> None:
        """不正なJSONにはエラー応答を返すことを確認する."""
        await server.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(socket_path))
            writer.write(b"{not json\n")
            await writer.drain()

            line = await asyncio.wait_for(reader.readline(), timeout=2.0)
            writer.close()
            await writer.wait_closed()
        finally:
            await server.stop()

        response = json.loads(line)
        assert response["ok"] is False
        assert response["error"].startswith("Invalid JSON")

    @pytest.mark.asyncio
    async def test_undecodable_bytes(
        self, server: HookServer, socket_path: Path
    ) -> None:
        """UTF-8でない入力にもエラー応答を返すことを確認する."""
        await server.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(socket_path))
            writer.write(b"\xff\xfe\n")
            await writer.drain()

            line = await asyncio.wait_for(reader.readline(), timeout=2.0)
            writer.close()
            await writer.wait_closed()
        finally:
            await server.stop()

        response = json.loads(line)
        assert response["ok"] is False
        assert response["error"].startswith("Invalid JSON")

    @pytest.mark.asyncio
    async def test_start_replaces_stale_socket(
        self, server: HookServer, socket_path: Path
    ) -> None:
        """残っていたソケットファイルを置き換えて起動できることを確認する."""
        socket_path.write_text("stale")

        await server.start()
        try:
            assert socket_path.exists()
        finally:
            await server.stop()
