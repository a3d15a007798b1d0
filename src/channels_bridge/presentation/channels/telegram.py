"""Telegram Bot API channel with long-poll update loop."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from channels_bridge.application.models import (
    ChannelError,
    InboundEvent,
    InboundEventKind,
)
from channels_bridge.infrastructure.logging import get_logger
from channels_bridge.presentation.channels.base import (
    IncomingCallback,
    ResponseCallback,
    format_permission_message,
    parse_response,
)

if TYPE_CHECKING:
    from channels_bridge.application.models import (
        ChannelMessage,
        Decision,
        PermissionRequest,
    )
    from channels_bridge.infrastructure.config import TelegramConfig

logger = get_logger(__name__)

# 受信エラー時の再試行間隔（秒）
RETRY_DELAY = 5.0

ALLOWED_UPDATES = ["message", "callback_query"]


class TelegramAPIError(ChannelError):
    """Bot API が ok=false を返した、または応答が不正な場合の例外."""

    def __init__(
        self,
        method: str,
        description: str,
        error_code: int | None = None,
    ) -> None:
        """
        Initialize TelegramAPIError.

        Args:
            method: 呼び出したAPIメソッド名
            description: APIが返したエラー内容
            error_code: APIが返したエラーコード
        """
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


class CursorStore(Protocol):
    """処理済みupdate_idのチェックポイント."""

    def get_last_update_id(self) -> int | None: ...

    def set_last_update_id(self, update_id: int) -> None: ...


def parse_update(update: dict[str, Any]) -> InboundEvent | None:
    """
    Bot APIのUpdateを InboundEvent に正規化する.

    Args:
        update: getUpdates が返した1件のUpdate

    Returns:
        正規化したイベント。扱わない種類のUpdateの場合はNone
    """
    update_id = update.get("update_id")

    query = update.get("callback_query")
    if query:
        origin = query.get("message") or {}
        chat = origin.get("chat") or {}
        target = origin.get("message_id")
        return InboundEvent(
            kind=InboundEventKind.CALLBACK,
            chat_id=str(chat.get("id", "")),
            target_message_id=str(target) if target is not None else None,
            data=query.get("data"),
            callback_id=query.get("id"),
            update_id=update_id,
        )

    message = update.get("message")
    if not message:
        return None

    chat = message.get("chat") or {}
    reply_to = message.get("reply_to_message") or {}
    target = reply_to.get("message_id")
    return InboundEvent(
        kind=InboundEventKind.REPLY if target is not None else InboundEventKind.MESSAGE,
        chat_id=str(chat.get("id", "")),
        text=message.get("text"),
        target_message_id=str(target) if target is not None else None,
        update_id=update_id,
    )


class TelegramChannel:
    """
    Telegram Bot API を使ったチャネル.

    getUpdates の long-poll で受信し、返信・ボタン押下を送信済みの
    パーミッション要求に突き合わせる。突き合わせに失敗したイベントは
    キュー経由で on_incoming の購読者に渡す.
    """

    name = "telegram"

    def __init__(
        self,
        config: TelegramConfig,
        *,
        cursor_store: CursorStore | None = None,
        retry_delay: float = RETRY_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize TelegramChannel.

        Args:
            config: Telegram接続設定
            cursor_store: 処理済みupdate_idの保存先
            retry_delay: 受信エラー時の再試行間隔（秒）
            transport: テスト用のトランスポート
        """
        self._config = config
        self._cursor_store = cursor_store
        self._retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=f"{config.api_base_url.rstrip('/')}/bot{config.bot_token}",
            timeout=httpx.Timeout(config.poll_timeout + 10),
            transport=transport,
        )

        last_update_id = cursor_store.get_last_update_id() if cursor_store else None
        self._offset = last_update_id + 1 if last_update_id is not None else 0

        # request_id -> Telegram message_id（と逆引き）
        self._pending_messages: dict[str, int] = {}
        self._message_requests: dict[int, str] = {}

        self._response_callbacks: list[ResponseCallback] = []
        self._incoming_callbacks: list[IncomingCallback] = []
        self._inbound: asyncio.Queue[InboundEvent] = asyncio.Queue()

        self._running = False
        self._poll_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None

    @property
    def offset(self) -> int:
        """次に要求するupdate_id."""
        return self._offset

    @property
    def pending_message_ids(self) -> dict[str, int]:
        """応答待ちの request_id -> message_id の対応表（コピー）."""
        return dict(self._pending_messages)

    @property
    def is_running(self) -> bool:
        """受信ループが動作中かどうか."""
        return self._running

    def on_response(self, callback: ResponseCallback) -> None:
        """パーミッション要求への応答を購読する."""
        self._response_callbacks.append(callback)

    def on_incoming(self, callback: IncomingCallback) -> None:
        """要求に紐づかない受信イベントを購読する."""
        self._incoming_callbacks.append(callback)

    async def start(self) -> None:
        """受信ループとディスパッチループを開始する."""
        if self._running:
            return

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.info("Telegram channel started", offset=self._offset)

    async def stop(self) -> None:
        """
        受信ループを停止する.

        実行中の getUpdates はキャンセルされる。応答待ちの要求には触れない
        （各要求は自身のタイマーで期限切れになる）.
        """
        self._running = False
        for task in (self._poll_task, self._dispatch_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._poll_task = None
        self._dispatch_task = None

        await self._client.aclose()
        logger.info("Telegram channel stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                updates = await self._get_updates()
            except Exception:
                logger.warning(
                    "Polling error, retrying",
                    retry_delay=self._retry_delay,
                    exc_info=True,
                )
                await asyncio.sleep(self._retry_delay)
                continue

            for update in updates:
                update_id = update.get("update_id")
                try:
                    await self._handle_update(update)
                except Exception:
                    logger.exception("Error handling update", update_id=update_id)
                if isinstance(update_id, int):
                    self._advance_cursor(update_id)

    async def _get_updates(self) -> list[dict[str, Any]]:
        result = await self._call(
            "getUpdates",
            {
                "offset": self._offset,
                "timeout": self._config.poll_timeout,
                "allowed_updates": ALLOWED_UPDATES,
            },
        )
        if not isinstance(result, list):
            raise TelegramAPIError("getUpdates", "result is not a list")
        return result

    def _advance_cursor(self, update_id: int) -> None:
        if update_id < self._offset:
            return

        self._offset = update_id + 1
        if self._cursor_store is None:
            return
        try:
            self._cursor_store.set_last_update_id(update_id)
        except Exception:
            logger.exception("Failed to checkpoint update cursor", update_id=update_id)

    async def _handle_update(self, update: dict[str, Any]) -> None:
        event = parse_update(update)
        if event is None:
            logger.debug("Ignoring unsupported update", update_id=update.get("update_id"))
            return

        if event.chat_id != self._config.chat_id:
            logger.debug(
                "Ignoring update from other chat",
                chat_id=event.chat_id,
                update_id=event.update_id,
            )
            return

        request_id = (
            self.find_request_id(event.target_message_id)
            if event.target_message_id is not None
            else None
        )

        if event.kind == InboundEventKind.CALLBACK:
            if request_id is not None and event.data:
                decision = parse_response(event.data)
                if self._notify_response(request_id, decision):
                    answer = f"Response: {decision}"
                else:
                    answer = "This request is no longer pending."
                await self._answer_callback(event.callback_id, answer)
                return
            await self._answer_callback(
                event.callback_id, "This request is no longer pending."
            )
        elif request_id is not None and event.text:
            self._notify_response(request_id, parse_response(event.text))
            return

        self._inbound.put_nowait(event)

    def _notify_response(self, request_id: str, decision: Decision) -> bool:
        """購読者に応答を渡し、いずれかが要求を完了させたかを返す."""
        logger.info("Received permission response", request_id=request_id)
        resolved = False
        for callback in list(self._response_callbacks):
            try:
                resolved = bool(callback(request_id, decision)) or resolved
            except Exception:
                logger.exception("Response callback failed", request_id=request_id)
        return resolved

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._inbound.get()
            try:
                for callback in list(self._incoming_callbacks):
                    try:
                        await callback(event)
                    except Exception:
                        logger.exception(
                            "Incoming callback failed", update_id=event.update_id
                        )
            finally:
                self._inbound.task_done()

    def find_request_id(self, message_id: str) -> str | None:
        """
        チャネル上のメッセージIDから応答待ちのリクエストIDを引く.

        Args:
            message_id: Telegramのmessage_id

        Returns:
            リクエストID。応答待ちでなければNone
        """
        try:
            native_id = int(message_id)
        except ValueError:
            return None
        return self._message_requests.get(native_id)

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        response = await self._client.post(f"/{method}", json=payload)
        data = response.json()
        if not isinstance(data, dict):
            raise TelegramAPIError(method, "malformed response")
        if not data.get("ok"):
            raise TelegramAPIError(
                method,
                data.get("description") or "unknown error",
                data.get("error_code"),
            )
        return data.get("result")

    async def _answer_callback(self, callback_id: str | None, text: str) -> None:
        if not callback_id:
            return
        try:
            await self._call(
                "answerCallbackQuery",
                {"callback_query_id": callback_id, "text": text},
            )
        except Exception:
            logger.debug("Failed to answer callback query", exc_info=True)

    async def send(self, message: ChannelMessage) -> None:
        """
        メッセージを送信する.

        Args:
            message: 送信するメッセージ

        Raises:
            TelegramAPIError: APIがエラーを返した場合
            httpx.HTTPError: 通信に失敗した場合
        """
        payload: dict[str, Any] = {
            "chat_id": self._config.chat_id,
            "text": message.text,
            "parse_mode": message.parse_mode or self._config.parse_mode,
        }
        if message.buttons:
            payload["reply_markup"] = {
                "inline_keyboard": [
                    [
                        {"text": button.text, "callback_data": button.callback_data}
                        for button in message.buttons
                    ]
                ]
            }
        await self._call("sendMessage", payload)

    async def send_permission_request(self, request: PermissionRequest) -> str:
        """
        パーミッション要求を Allow/Deny ボタン付きで送信する.

        返却前に対応表へ登録するため、直後に届いた返信も突き合わせられる.

        Args:
            request: パーミッション要求

        Returns:
            Telegramのmessage_id（文字列）

        Raises:
            TelegramAPIError: APIがエラーを返した場合
            httpx.HTTPError: 通信に失敗した場合
        """
        result = await self._call(
            "sendMessage",
            {
                "chat_id": self._config.chat_id,
                "text": format_permission_message(request),
                "parse_mode": self._config.parse_mode,
                "reply_markup": {
                    "inline_keyboard": [
                        [
                            {"text": "✅ Allow", "callback_data": "allow"},
                            {"text": "❌ Deny", "callback_data": "deny"},
                        ]
                    ]
                },
            },
        )
        if not isinstance(result, dict) or "message_id" not in result:
            raise TelegramAPIError("sendMessage", "missing message_id")

        message_id = int(result["message_id"])
        self._pending_messages[request.id] = message_id
        self._message_requests[message_id] = request.id

        logger.info(
            "Sent permission request",
            request_id=request.id,
            message_id=message_id,
            tool=request.tool,
        )
        return str(message_id)

    async def update_message(self, message_id: str, content: str) -> None:
        """
        送信済みのパーミッション要求を最終状態に書き換える.

        編集の失敗は無視する。成否に関わらず対応表から削除する.

        Args:
            message_id: send_permission_request が返したmessage_id
            content: 新しい本文
        """
        try:
            native_id = int(message_id)
        except ValueError:
            logger.warning("Invalid message id for update", message_id=message_id)
            return

        try:
            await self._call(
                "editMessageText",
                {
                    "chat_id": self._config.chat_id,
                    "message_id": native_id,
                    "text": content,
                    "parse_mode": self._config.parse_mode,
                },
            )
        except Exception:
            logger.warning(
                "Failed to update message", message_id=message_id, exc_info=True
            )
        finally:
            request_id = self._message_requests.pop(native_id, None)
            if request_id is not None:
                self._pending_messages.pop(request_id, None)
