"""Tests for the pending permission request store."""

from __future__ import annotations

import asyncio
import time

import pytest

from channels_bridge.application.models import PermissionRequest
from channels_bridge.application.pending import (
    PendingRequestStore,
    PermissionTimeoutError,
    StoreClearedError,
)


def _make_request(request_id: str = "perm_1_abc") -> PermissionRequest:
    """テスト用のPermissionRequestを作成する."""
    return PermissionRequest(
        id=request_id,
        session_id="ses_1",
        tool="bash",
        args={"cmd": "ls"},
        timestamp=time.time(),
    )


class TestRegisterAndResolve:
    """register / resolve のテスト."""

    @pytest.mark.asyncio
    async def test_resolve_completes_future(self) -> None:
        """resolveで決定がFutureに渡ることを確認する."""
        store = PendingRequestStore(timeout=10)
        future = store.register(_make_request(), "42")

        assert store.has("perm_1_abc")
        assert store.resolve("perm_1_abc", "allow") is True
        assert await future == "allow"
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_record_keeps_message_id(self) -> None:
        """登録レコードにメッセージIDが保持されることを確認する."""
        store = PendingRequestStore(timeout=10)
        store.register(_make_request(), "42")

        pending = store.get("perm_1_abc")
        assert pending is not None
        assert pending.message_id == "42"
        assert pending.tool == "bash"
        assert [p.id for p in store.get_all()] == ["perm_1_abc"]
        store.clear()

    @pytest.mark.asyncio
    async def test_second_resolve_is_noop(self) -> None:
        """2回目のresolveはFalseを返し、結果を変えないことを確認する."""
        store = PendingRequestStore(timeout=10)
        future = store.register(_make_request(), "42")

        assert store.resolve("perm_1_abc", "deny") is True
        assert store.resolve("perm_1_abc", "allow") is False
        assert await future == "deny"

    @pytest.mark.asyncio
    async def test_resolve_unknown_returns_false(self) -> None:
        """未登録IDのresolveはFalseを返すことを確認する."""
        store = PendingRequestStore(timeout=10)
        assert store.resolve("missing", "allow") is False

    @pytest.mark.asyncio
    async def test_duplicate_register_rejected(self) -> None:
        """同じIDの二重登録はValueErrorになることを確認する."""
        store = PendingRequestStore(timeout=10)
        store.register(_make_request(), "42")

        with pytest.raises(ValueError, match="already pending"):
            store.register(_make_request(), "43")
        store.clear()

    @pytest.mark.asyncio
    async def test_resolve_out_of_order(self) -> None:
        """異なるIDは登録順と無関係に解決できることを確認する."""
        store = PendingRequestStore(timeout=10)
        first = store.register(_make_request("a"), "1")
        second = store.register(_make_request("b"), "2")

        store.resolve("b", "deny")
        store.resolve("a", "allow")

        assert await first == "allow"
        assert await second == "deny"


class TestTimeout:
    """タイムアウトのテスト."""

    @pytest.mark.asyncio
    async def test_times_out_not_before_window(self) -> None:
        """応答がなければ待ち時間経過後にタイムアウトすることを確認する."""
        loop = asyncio.get_running_loop()
        store = PendingRequestStore(timeout=0.1)

        started = loop.time()
        future = store.register(_make_request(), "42")

        with pytest.raises(PermissionTimeoutError) as exc_info:
            await future

        assert loop.time() - started >= 0.1
        assert exc_info.value.request_id == "perm_1_abc"
        assert exc_info.value.timeout == 0.1
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_resolve_after_timeout_is_noop(self) -> None:
        """タイムアウト後のresolveはFalseを返すことを確認する."""
        store = PendingRequestStore(timeout=0.05)
        future = store.register(_make_request(), "42")

        with pytest.raises(PermissionTimeoutError):
            await future

        assert store.resolve("perm_1_abc", "allow") is False

    @pytest.mark.asyncio
    async def test_expire_after_resolve_is_noop(self) -> None:
        """解決済みの要求に対する期限切れ処理は何もしないことを確認する."""
        store = PendingRequestStore(timeout=10)
        future = store.register(_make_request(), "42")

        assert store.resolve("perm_1_abc", "allow") is True
        assert store._expire("perm_1_abc") is False
        assert await future == "allow"

    @pytest.mark.asyncio
    async def test_timer_cancelled_on_resolve(self) -> None:
        """解決時にタイマーがキャンセルされることを確認する."""
        store = PendingRequestStore(timeout=10)
        store.register(_make_request(), "42")
        pending = store.get("perm_1_abc")
        assert pending is not None and pending.timer is not None

        store.resolve("perm_1_abc", "allow")

        assert pending.timer.cancelled()


class TestClear:
    """clear のテスト."""

    @pytest.mark.asyncio
    async def test_clear_fails_all_outstanding(self) -> None:
        """clearで全ての応答待ちがStoreClearedErrorになることを確認する."""
        store = PendingRequestStore(timeout=10)
        futures = [
            store.register(_make_request(f"perm_{i}"), str(i)) for i in range(3)
        ]

        store.clear()

        assert len(store) == 0
        for future in futures:
            with pytest.raises(StoreClearedError):
                await future

    @pytest.mark.asyncio
    async def test_clear_empty_store(self) -> None:
        """空のストアのclearは何もしないことを確認する."""
        store = PendingRequestStore(timeout=10)
        store.clear()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_discard_cancels_future(self) -> None:
        """discardでFutureがキャンセルされ、ストアから消えることを確認する."""
        store = PendingRequestStore(timeout=10)
        future = store.register(_make_request(), "42")

        assert store.discard("perm_1_abc") is True
        assert future.cancelled()
        assert store.discard("perm_1_abc") is False
