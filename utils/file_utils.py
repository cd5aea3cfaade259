# -*- coding: utf-8 -*-
"""
File utilities for Manga Bridge Downloader
"""

import os
import shutil
from pathlib import Path
from typing import Callable

from core.interfaces import IFileSystem


class LocalFileSystem(IFileSystem):
    """ローカルディスク上のファイル操作"""

    def __init__(self, logger: Callable[[str, str], None] = None):
        self.logger = logger

    def log(self, message, level="info"):
        """ログ出力メソッド"""
        if self.logger:
            self.logger(f"[FileSystem] {message}", level)

    def make_dirs(self, path: str):
        os.makedirs(path, exist_ok=True)

    def write_bytes(self, path: str, data: bytes):
        """一時ファイルに書いてから本来のファイル名に移動"""
        temp_path = path + '.tmp'
        save_dir = os.path.dirname(path)
        if save_dir and not os.path.exists(save_dir):
            os.makedirs(save_dir, exist_ok=True)
        try:
            with open(temp_path, 'wb') as f:
                f.write(data)
            os.replace(temp_path, path)
        except BaseException:
            self._cleanup_temp_file(temp_path)
            raise

    def _cleanup_temp_file(self, temp_path: str):
        """一時ファイルの安全な削除"""
        try:
            if os.path.exists(temp_path):
                os.remove(temp_path)
        except OSError as e:
            self.log(f"一時ファイルの削除に失敗: {e}", "error")

    def read_bytes(self, path: str) -> bytes:
        with open(path, 'rb') as f:
            return f.read()

    def delete(self, path: str):
        if os.path.isdir(path):
            shutil.rmtree(path, ignore_errors=True)
        elif os.path.exists(path):
            os.remove(path)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def file_size(self, path: str) -> int:
        try:
            return os.path.getsize(path)
        except OSError:
            return 0

    def directory_size(self, path: str) -> int:
        """ディレクトリ配下の全ファイルの合計サイズ"""
        total = 0
        for root, _dirs, files in os.walk(path):
            for name in files:
                total += self.file_size(os.path.join(root, name))
        return total

    def to_uri(self, path: str) -> str:
        return Path(os.path.abspath(path)).as_uri()
