"""Unix socket server for host permission and notification hooks.

The host's hook process connects, writes one JSON object per line and reads
one JSON reply per line:

    {"type": "permission.ask", "tool": "bash", "args": {...}, "session_id": "..."}
    -> {"status": "allow" | "deny" | null, "message": "..."}

    {"type": "notification", "event": "complete", "session_id": "...", "details": "..."}
    -> {"ok": true}
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from pathlib import Path  # noqa: TC003
from typing import TYPE_CHECKING, Any

from channels_bridge.application.models import ALLOW, DENY, Decision, NotificationKind
from channels_bridge.application.pending import (
    DeliveryTimeoutError,
    PermissionTimeoutError,
    StoreClearedError,
)
from channels_bridge.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from channels_bridge.application.notification import NotificationService
    from channels_bridge.application.permission import PermissionService

logger = get_logger(__name__)

# 1行目が届くまでの待ち時間（秒）
READ_TIMEOUT = 60.0


def decision_to_hook_result(decision: Decision) -> dict[str, Any]:
    """
    決定をホストのフック応答に変換する.

    自由文の応答は許可とは扱わず、deny と共に本文をそのまま返す.
    """
    if decision == ALLOW:
        return {"status": "allow"}
    if decision == DENY:
        return {"status": "deny"}
    return {"status": "deny", "message": decision}


class HookServer:
    """ホストのフックからの要求を受け付けるUnixソケットサーバー."""

    def __init__(
        self,
        socket_path: Path,
        permission_service: PermissionService,
        notification_service: NotificationService,
        *,
        ask_permissions: bool = True,
    ) -> None:
        """
        Initialize HookServer.

        Args:
            socket_path: Unixソケットのパス
            permission_service: パーミッション要求の処理
            notification_service: 通知の送信
            ask_permissions: Falseの場合はパーミッション要求をチャネルに送らない
        """
        self.socket_path = socket_path
        self._permission_service = permission_service
        self._notification_service = notification_service
        self._ask_permissions = ask_permissions
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        """サーバーを起動する."""
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        self.socket_path.unlink(missing_ok=True)

        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self.socket_path)
        )
        logger.info("Hook server started", socket_path=str(self.socket_path))

    async def stop(self) -> None:
        """サーバーを停止し、ソケットファイルを削除する."""
        if self._server is not None:
            self._server.close()
            try:
                await self._server.wait_closed()
            except Exception:
                logger.warning("Error waiting for hook server close", exc_info=True)
            self._server = None

        try:
            self.socket_path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Error removing socket file", exc_info=True)

        logger.info("Hook server stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            data = await asyncio.wait_for(reader.readline(), timeout=READ_TIMEOUT)
            if not data:
                logger.warning("Empty hook request received")
                return

            try:
                request = json.loads(data.decode())
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                response: dict[str, Any] = {"ok": False, "error": f"Invalid JSON: {e}"}
            else:
                response = await self.handle_request(request)

            writer.write(json.dumps(response).encode() + b"\n")
            await writer.drain()

        except TimeoutError:
            logger.warning("Hook request read timed out")
        except Exception:
            logger.exception("Error handling hook connection")
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    async def handle_request(self, request: Any) -> dict[str, Any]:
        """
        フックの要求を1件処理する.

        Args:
            request: デコード済みの要求

        Returns:
            フックへ返す応答
        """
        if not isinstance(request, dict):
            return {"ok": False, "error": "Request must be a JSON object"}

        request_type = request.get("type")
        if request_type == "permission.ask":
            return await self._handle_permission(request)
        if request_type == "notification":
            return await self._handle_notification(request)
        return {"ok": False, "error": f"Invalid request type: {request_type}"}

    async def _handle_permission(self, request: dict[str, Any]) -> dict[str, Any]:
        if not self._ask_permissions:
            return {"status": None}

        tool = str(request.get("tool") or "unknown")
        description = request.get("description")
        try:
            decision = await self._permission_service.handle_permission_request(
                tool,
                request.get("args"),
                str(request.get("session_id") or ""),
                description=str(description) if description is not None else None,
            )
        except DeliveryTimeoutError as e:
            return {
                "status": None,
                "message": f"Could not deliver request within {e.timeout:g}s",
            }
        except PermissionTimeoutError as e:
            return {
                "status": None,
                "message": f"No response within {e.timeout:g}s",
            }
        except StoreClearedError:
            return {"status": None, "message": "Bridge is shutting down"}
        except Exception as e:
            logger.exception("Permission request failed", tool=tool)
            return {"status": None, "message": f"Permission request failed: {e}"}

        return decision_to_hook_result(decision)

    async def _handle_notification(self, request: dict[str, Any]) -> dict[str, Any]:
        try:
            kind = NotificationKind(request.get("event"))
        except ValueError:
            return {"ok": False, "error": f"Unknown event: {request.get('event')}"}

        session_id = str(request.get("session_id") or "")
        details = request.get("details")
        if kind == NotificationKind.COMPLETE:
            sent = await self._notification_service.notify_complete(session_id, details)
        elif kind == NotificationKind.ERROR:
            sent = await self._notification_service.notify_error(
                session_id, details or "Unknown error"
            )
        else:
            sent = await self._notification_service.notify_idle(session_id)
        return {"ok": True, "sent": sent}
