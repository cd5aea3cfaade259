# -*- coding: utf-8 -*-
"""
永続キー・バリューストア

ダウンロード済みメタデータ、インストール済み拡張、拡張ごとの状態を
1つのJSONファイルに保存する。値は全て文字列（呼び出し側でJSONに変換する）。
"""

import json
import os
import threading
from typing import Callable, Dict, List, Optional

from core.interfaces import IKeyValueStore


class JsonKeyValueStore(IKeyValueStore):
    """JSONファイルに保存するキー・バリューストア"""

    def __init__(self, save_file: str, logger: Callable[[str, str], None] = None):
        """
        Args:
            save_file: 保存先のJSONファイル
            logger: ログ出力関数（省略可）
        """
        self.save_file = save_file
        self.logger = logger
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, str]] = None

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[Storage] {message}", level)
        else:
            print(f"[Storage] {message}")

    def _load(self) -> Dict[str, str]:
        """ファイルから読み込み（初回のみ、ロック取得済みで呼ぶ）"""
        if self._data is not None:
            return self._data

        self._data = {}
        if os.path.exists(self.save_file):
            try:
                with open(self.save_file, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}
            except (OSError, json.JSONDecodeError) as e:
                self.log(f"ストレージの読み込みに失敗しました: {e}", "error")
        return self._data

    def _flush(self):
        """一時ファイルに書いてから置き換える（ロック取得済みで呼ぶ）"""
        directory = os.path.dirname(self.save_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        temp_path = self.save_file + '.tmp'
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)
        os.replace(temp_path, self.save_file)

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str):
        with self._lock:
            self._load()[key] = str(value)
            self._flush()

    def remove_item(self, key: str):
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._flush()

    def get_all_keys(self) -> List[str]:
        with self._lock:
            return list(self._load().keys())


class MemoryKeyValueStore(IKeyValueStore):
    """メモリ上のキー・バリューストア（テスト・一時利用）"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_item(self, key: str, value: str):
        with self._lock:
            self._data[key] = str(value)

    def remove_item(self, key: str):
        with self._lock:
            self._data.pop(key, None)
