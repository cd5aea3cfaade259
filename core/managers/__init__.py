# -*- coding: utf-8 -*-
"""
Core managers layer - 状態・データ管理層
永続ストア、インストール済み拡張、ソースサービスを担当
"""

from .storage_manager import JsonKeyValueStore, MemoryKeyValueStore
from .extension_store import ExtensionStore
from .source_manager import SourceManager

__all__ = [
    'JsonKeyValueStore',
    'MemoryKeyValueStore',
    'ExtensionStore',
    'SourceManager',
]
