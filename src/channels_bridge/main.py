"""Main entry point for the Channels Bridge application."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from channels_bridge.application.notification import NotificationService
from channels_bridge.application.pending import PendingRequestStore
from channels_bridge.application.permission import PermissionService
from channels_bridge.application.remote import RemoteController
from channels_bridge.infrastructure.config import get_config
from channels_bridge.infrastructure.host_client import HostClient
from channels_bridge.infrastructure.logging import configure_logging, get_logger
from channels_bridge.infrastructure.state import StateStore
from channels_bridge.presentation.channels import ConfigurationError, create_channel
from channels_bridge.presentation.hook_server import HookServer


async def main() -> None:
    """アプリケーションのメインエントリポイント."""
    # 設定を読み込み（ロギング設定より前に必要）
    config = get_config()

    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        log_backup_count=config.log_backup_count,
    )

    logger = get_logger(__name__)

    if not config.enabled:
        logger.info("Bridge disabled in config")
        return

    logger.info("Starting Channels Bridge...", channel=config.default_channel)

    state = StateStore(config.state_file)
    try:
        channel = create_channel(config, cursor_store=state)
    except ConfigurationError:
        logger.exception("Invalid channel configuration")
        sys.exit(1)

    store = PendingRequestStore(timeout=config.timeout)
    permission_service = PermissionService(channel, store)
    notification_service = NotificationService(channel, config.notifications)
    host = HostClient(config.host_url, config.host_directory)
    remote = RemoteController(
        channel,
        host,
        state,
        enabled=state.is_enabled(default=config.remote_control),
    )
    channel.on_incoming(remote.handle_incoming)

    hook_server = HookServer(
        config.hook_socket_path,
        permission_service,
        notification_service,
        ask_permissions=config.notifications.on_permission,
    )

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        if shutdown_event.is_set():
            return  # 二重呼び出しを防止
        logger.info("Received shutdown signal, shutting down gracefully...")
        shutdown_event.set()

    # Windows では loop.add_signal_handler が未実装のため signal.signal にフォールバック
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)
    except NotImplementedError:
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(signal_handler))

    try:
        await channel.start()
        await hook_server.start()
        logger.info("Channels Bridge running")

        await shutdown_event.wait()

    except Exception:
        logger.exception("Fatal error occurred")
        sys.exit(1)
    finally:
        # 応答待ちを打ち切ってからチャネルを止める（最終メッセージの編集のため）
        store.clear()
        await asyncio.sleep(0)

        try:
            await hook_server.stop()
        except Exception:
            logger.exception("Error during hook server cleanup")

        try:
            await asyncio.wait_for(channel.stop(), timeout=5.0)
        except TimeoutError:
            logger.warning("Channel stop timed out")
        except Exception:
            logger.exception("Error during channel cleanup")

        try:
            await host.close()
        except Exception:
            logger.exception("Error during host client cleanup")

        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        except NotImplementedError:
            for sig in (signal.SIGINT, signal.SIGTERM):
                signal.signal(sig, signal.SIG_DFL)

        logger.info("Shutdown complete")

        logging.shutdown()


def run() -> None:
    """コンソールスクリプト用のエントリポイント."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
