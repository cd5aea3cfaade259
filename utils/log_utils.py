# -*- coding: utf-8 -*-
"""
Log utilities for Manga Bridge Downloader

コア層の各コンポーネントは logger: Callable[[str, str], None] を受け取り、
(message, level) の形でログを出す。未指定時は console_log を使う。
"""

import time
from typing import Callable, Optional

LogFunc = Callable[[str, str], None]

# debugレベルを表示するかどうか（main.py から設定される）
_debug_enabled = False


def set_debug_enabled(enabled: bool) -> None:
    global _debug_enabled
    _debug_enabled = bool(enabled)


def console_log(message: str, level: str = "info") -> None:
    """標準出力にログを出す（ログビューと同じ書式）"""
    if level == "debug" and not _debug_enabled:
        return
    print(f"{time.strftime('%H:%M:%S')} [{level.upper()}] {message}")


def make_logger(prefix: str, logger: Optional[LogFunc] = None) -> LogFunc:
    """
    プレフィックス付きのロガーを作成

    Args:
        prefix: "[HttpClient]" のようなプレフィックス（角括弧は自動で付ける）
        logger: 出力先（省略時は console_log）

    Returns:
        (message, level) を受け取るロガー関数
    """
    target = logger or console_log
    tag = prefix if prefix.startswith('[') else f"[{prefix}]"

    def _log(message: str, level: str = "info") -> None:
        target(f"{tag} {message}", level)

    return _log
