# -*- coding: utf-8 -*-
"""
インターフェース定義 - 依存関係の一方向化のため

オーケストレーターやブリッジはこれらの抽象にのみ依存し、
実装（SourceManager / LocalFileSystem / JsonKeyValueStore など）は
main.py で組み立てて注入する。
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional


class IChapterPageResolver(ABC):
    """チャプターのページURL解決・画像取得インターフェース"""

    @abstractmethod
    def get_chapter_pages(self, source_id: str, manga_id: str, chapter_id: str) -> List[str]:
        pass

    @abstractmethod
    def decrypt_drm_image(self, extension_id: str, url: str) -> str:
        """DRM画像を復号し data URI（data:image/jpeg;base64,...）を返す"""
        pass

    @abstractmethod
    def fetch_image(self, extension_id: str, url: str) -> Optional[str]:
        """拡張のリクエストマネージャ経由で画像を取得し data URI を返す（取得できなければ None）"""
        pass


class IFileSystem(ABC):
    """ファイルシステムインターフェース"""

    @abstractmethod
    def make_dirs(self, path: str):
        pass

    @abstractmethod
    def write_bytes(self, path: str, data: bytes):
        pass

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, path: str):
        """ファイルまたはディレクトリを削除（存在しなくてもエラーにしない）"""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def file_size(self, path: str) -> int:
        pass

    @abstractmethod
    def directory_size(self, path: str) -> int:
        pass

    @abstractmethod
    def to_uri(self, path: str) -> str:
        pass


class IBackgroundExecutor(ABC):
    """バックグラウンド実行インターフェース"""

    @abstractmethod
    def start(self, loop_fn: Callable[[], None]):
        pass

    @abstractmethod
    def stop(self):
        pass

    @abstractmethod
    def update_notification(self, title: str, description: str, progress: Optional[float] = None):
        pass

    @abstractmethod
    def is_running(self) -> bool:
        pass


class IKeyValueStore(ABC):
    """永続キー・バリューストアインターフェース（値は文字列）"""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str):
        pass

    @abstractmethod
    def remove_item(self, key: str):
        pass


class INetworkMonitor(ABC):
    """ネットワーク種別インターフェース"""

    @abstractmethod
    def get_network_type(self) -> Any:
        """NetworkType を返す"""
        pass
