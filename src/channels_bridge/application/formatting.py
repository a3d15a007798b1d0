"""Helpers for Telegram legacy Markdown text."""

from __future__ import annotations

# legacy Markdown でエンティティを開始する文字
_MARKDOWN_SPECIAL = "_*`["


def escape_markdown(text: str) -> str:
    """
    エンティティの外に埋め込む文字列をエスケープする.

    閉じていない `_` などがあると Bot API はメッセージ全体を拒否するため、
    ホストのエラー文や人間の自由文はこれを通してから埋め込む.

    Args:
        text: 埋め込む文字列

    Returns:
        エスケープ済みの文字列
    """
    return "".join(f"\\{ch}" if ch in _MARKDOWN_SPECIAL else ch for ch in text)
