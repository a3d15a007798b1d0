"""Configuration management."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "channels.json"

_DEFAULT_CONFIG_DIR = Path.home() / ".config" / "opencode"


class TelegramConfig(BaseModel):
    """Telegram Bot API の接続設定."""

    bot_token: str = Field(..., min_length=1, description="Bot token (@BotFather)")
    chat_id: str = Field(..., min_length=1, description="送受信対象のチャットID")
    parse_mode: Literal["Markdown", "HTML"] = "Markdown"
    api_base_url: str = "https://api.telegram.org"
    poll_timeout: int = Field(default=30, ge=1, le=50)

    @field_validator("chat_id", mode="before")
    @classmethod
    def parse_chat_id(cls, v: str | int) -> str:
        """chat_idは数値で書かれることが多いので文字列に揃える."""
        if isinstance(v, int):
            return str(v)
        return v


class NotificationsConfig(BaseModel):
    """イベント種別ごとの通知ON/OFF."""

    on_permission: bool = True
    on_complete: bool = True
    on_error: bool = True
    on_idle: bool = False


class Config(BaseSettings):
    """アプリケーション設定."""

    model_config = SettingsConfigDict(
        env_prefix="CHANNELS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    default_channel: Literal["telegram", "slack", "discord"] = "telegram"
    telegram: TelegramConfig | None = None
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    # パーミッション応答の待ち時間（秒）
    timeout: int = Field(default=300, ge=10, le=3600)

    # リモート操作（/list, /use, 自由文の転送）
    remote_control: bool = True
    host_url: str = Field(
        default="http://127.0.0.1:4096",
        description="ホストのセッションAPIのベースURL",
    )
    host_directory: str | None = Field(
        default=None,
        description="ホストAPIに渡すプロジェクトディレクトリ",
    )

    state_file: Path = Field(
        default=_DEFAULT_CONFIG_DIR / "channels-state.json",
        description="永続化する状態ファイルのパス",
    )
    hook_socket_path: Path = Field(
        default=_DEFAULT_CONFIG_DIR / "channels.sock",
        description="ホストのフックが接続するUnixソケットのパス",
    )

    # ロギング
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_backup_count: int = 7

    @field_validator("state_file", "hook_socket_path", mode="after")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        """`~` を展開する."""
        return v.expanduser()


def find_config_file(
    cwd: Path | None = None,
    home: Path | None = None,
) -> Path | None:
    """
    設定ファイルを探す.

    プロジェクト単位の `.opencode/channels.json` を優先し、
    次にユーザー単位の `~/.config/opencode/channels.json` を探す.

    Args:
        cwd: 探索の起点ディレクトリ（デフォルトはカレントディレクトリ）
        home: ホームディレクトリ（デフォルトは Path.home()）

    Returns:
        見つかったファイルのパス。なければNone
    """
    cwd = cwd or Path.cwd()
    home = home or Path.home()
    candidates = [
        cwd / ".opencode" / CONFIG_FILE_NAME,
        home / ".config" / "opencode" / CONFIG_FILE_NAME,
    ]
    for path in candidates:
        if path.is_file():
            return path
    return None


def load_config_file(path: Path) -> dict[str, Any] | None:
    """
    設定ファイルを読み込む.

    読めない・JSONオブジェクトでないファイルは警告を出して無視する.

    Args:
        path: 設定ファイルのパス

    Returns:
        設定値の辞書。読み込めない場合はNone
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Failed to read config file: %s", path, exc_info=True)
        return None

    if not isinstance(data, dict):
        logger.warning("Config file must contain a JSON object: %s", path)
        return None

    logger.info("Loaded config from %s", path)
    return data


# グローバル設定インスタンス（シングルトン）
_config: Config | None = None


def get_config() -> Config:
    """
    グローバル設定インスタンスを取得する.

    設定ファイルがあればその値を初期値とし、不足分を環境変数で補う.

    Returns:
        設定インスタンス
    """
    global _config
    if _config is None:
        path = find_config_file()
        values = load_config_file(path) if path is not None else None
        _config = Config(**(values or {}))
    return _config
