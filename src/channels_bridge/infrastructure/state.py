"""Persisted bridge state."""

from __future__ import annotations

from pathlib import Path  # noqa: TC003

from pydantic import BaseModel, ValidationError

from channels_bridge.infrastructure.logging import get_logger

logger = get_logger(__name__)


class BridgeState(BaseModel):
    """再起動を跨いで保持する状態."""

    enabled: bool | None = None
    active_session_id: str | None = None
    telegram_last_update_id: int | None = None


class StateStore:
    """
    状態をJSONファイルに永続化するストア.

    変更のたびにファイルへ書き出す。読み込みに失敗した場合は空の状態から始める.
    """

    def __init__(self, path: Path) -> None:
        """
        Initialize StateStore.

        Args:
            path: 状態ファイルのパス
        """
        self.path = path
        self._state = self._load()

    @property
    def state(self) -> BridgeState:
        """現在の状態のコピー."""
        return self._state.model_copy()

    def is_enabled(self, default: bool = False) -> bool:
        """
        リモート操作が有効かどうか.

        Args:
            default: 状態ファイルに値がない場合の既定値

        Returns:
            有効な場合True
        """
        if self._state.enabled is None:
            return default
        return self._state.enabled

    def set_enabled(self, enabled: bool) -> None:
        """有効フラグを保存する."""
        self._state.enabled = enabled
        self._save()

    def get_active_session_id(self) -> str | None:
        """アクティブセッションIDを返す."""
        return self._state.active_session_id

    def set_active_session_id(self, session_id: str | None) -> None:
        """アクティブセッションIDを保存する（Noneで解除）."""
        self._state.active_session_id = session_id
        self._save()

    def get_last_update_id(self) -> int | None:
        """Telegramの処理済みupdate_idを返す."""
        return self._state.telegram_last_update_id

    def set_last_update_id(self, update_id: int) -> None:
        """Telegramの処理済みupdate_idを保存する."""
        self._state.telegram_last_update_id = update_id
        self._save()

    def _load(self) -> BridgeState:
        if not self.path.exists():
            return BridgeState()

        try:
            return BridgeState.model_validate_json(
                self.path.read_text(encoding="utf-8")
            )
        except (OSError, ValueError, ValidationError):
            logger.warning(
                "Failed to load state file, starting empty", path=str(self.path)
            )
            return BridgeState()

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                self._state.model_dump_json(indent=2) + "\n", encoding="utf-8"
            )
        except OSError:
            logger.exception("Failed to save state file", path=str(self.path))
            raise
