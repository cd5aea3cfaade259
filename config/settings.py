# -*- coding: utf-8 -*-
"""
Settings for Manga Bridge Downloader

設定ファイル(JSON)を DEFAULT_VALUES にマージして読み込む。
未知のキーは無視し、欠けているキーはデフォルト値で補う。
"""

import json
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from config.constants import SETTINGS_FILENAME, STORAGE_FILENAME, DEFAULT_VALUES


@dataclass
class Settings:
    """アプリケーション設定"""
    data_dir: str = DEFAULT_VALUES['data_dir']
    downloads_dir: str = DEFAULT_VALUES['downloads_dir']
    rpc_timeout: float = DEFAULT_VALUES['rpc_timeout']
    network_timeout: float = DEFAULT_VALUES['network_timeout']
    state_timeout: float = DEFAULT_VALUES['state_timeout']
    parallel_chapters_wifi: int = DEFAULT_VALUES['parallel_chapters_wifi']
    parallel_chapters_cellular: int = DEFAULT_VALUES['parallel_chapters_cellular']
    sandbox_workers: int = DEFAULT_VALUES['sandbox_workers']
    jpg_quality: int = DEFAULT_VALUES['jpg_quality']
    debug_logging: bool = DEFAULT_VALUES['debug_logging']
    repositories: List[Dict[str, str]] = field(
        default_factory=lambda: [dict(r) for r in DEFAULT_VALUES['repositories']]
    )

    @property
    def downloads_path(self) -> str:
        """ダウンロード保存先の絶対パス"""
        if os.path.isabs(self.downloads_dir):
            return self.downloads_dir
        return os.path.join(self.data_dir, self.downloads_dir)

    @property
    def storage_path(self) -> str:
        return os.path.join(self.data_dir, STORAGE_FILENAME)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        """辞書から復元（dataclassのフィールドのみを抽出）"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


def load_settings(path: Optional[str] = None) -> Settings:
    """
    設定ファイルを読み込む

    Args:
        path: 設定ファイルパス（省略時はカレントの SETTINGS_FILENAME）

    Returns:
        Settings（ファイルが無い・壊れている場合はデフォルト値）
    """
    path = path or SETTINGS_FILENAME
    merged = dict(DEFAULT_VALUES)
    if os.path.exists(path):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                merged.update(loaded)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[Settings] 設定ファイルの読み込みに失敗しました: {e}")
    return Settings.from_dict(merged)


def save_settings(settings: Settings, path: Optional[str] = None) -> bool:
    """設定をJSONファイルに保存"""
    path = path or SETTINGS_FILENAME
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, ensure_ascii=False, indent=2)
        return True
    except OSError as e:
        print(f"[Settings] 設定ファイルの保存に失敗しました: {e}")
        return False
