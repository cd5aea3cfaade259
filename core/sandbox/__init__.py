# -*- coding: utf-8 -*-
"""
Core sandbox layer - 拡張スクリプトの実行層
拡張の読み込み・メソッド実行、公開機能（App / cheerio）、設定メニューの解決を担当
"""

from .sandbox_host import SandboxHost
from .source_registry import SourceRegistry
from .capabilities import App, DUIBinding, RequestManager, SourceStateManager, Source
from .settings_menu import RowType, classify_row, resolve_menu

__all__ = [
    'SandboxHost',
    'SourceRegistry',
    'App',
    'DUIBinding',
    'RequestManager',
    'SourceStateManager',
    'Source',
    'RowType',
    'classify_row',
    'resolve_menu',
]
