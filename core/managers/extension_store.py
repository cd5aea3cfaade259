# -*- coding: utf-8 -*-
"""
拡張ストア - インストール済み拡張の管理とリポジトリからの取得

責任:
1. インストール済み拡張の永続化（キー・バリューストア）
2. リポジトリの versioning.json の取得
3. 拡張スクリプト本体のダウンロード
4. 拡張ごとの状態（@extension_state_<id>_<key>）の読み書き
"""

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import requests

from config.constants import (
    EXTENSION_STATE_PREFIX,
    EXTENSION_USER_AGENT,
    INSTALLED_EXTENSIONS_KEY,
    MIN_SOURCE_SCRIPT_LENGTH,
)
from core.interfaces import IKeyValueStore
from core.models.extension import InstalledExtension
from core.network.http_client import HttpClient


class ExtensionStore:
    """インストール済み拡張とリポジトリの管理"""

    def __init__(self, store: IKeyValueStore, http_client: Optional[HttpClient] = None,
                 logger: Callable[[str, str], None] = None):
        self.store = store
        self.http_client = http_client or HttpClient(logger=logger)
        self.logger = logger
        self._lock = threading.Lock()

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[ExtensionStore] {message}", level)

    # ========================================
    # インストール済み拡張
    # ========================================

    def get_installed_extensions(self) -> List[InstalledExtension]:
        raw = self.store.get_item(INSTALLED_EXTENSIONS_KEY)
        if not raw:
            return []
        try:
            return [InstalledExtension.from_dict(item) for item in json.loads(raw)]
        except (ValueError, TypeError, AttributeError) as e:
            self.log(f"Error getting installed extensions: {e}", "error")
            return []

    def save_installed_extensions(self, extensions: List[InstalledExtension]):
        self.store.set_item(
            INSTALLED_EXTENSIONS_KEY,
            json.dumps([ext.to_dict() for ext in extensions], ensure_ascii=False),
        )

    def find_extension(self, extension_id: str) -> Optional[InstalledExtension]:
        for ext in self.get_installed_extensions():
            if ext.id == extension_id:
                return ext
        return None

    def install_extension(self, source: Dict[str, Any], repo_base_url: str,
                          repository_url: str = "") -> InstalledExtension:
        """
        versioning.json の1エントリをインストール済みとして登録
        （スクリプト本体は初回使用時に取得する）
        """
        ext = InstalledExtension.from_dict(source)
        ext.repo_base_url = repo_base_url
        ext.repository_url = repository_url or repo_base_url

        with self._lock:
            extensions = [e for e in self.get_installed_extensions() if e.id != ext.id]
            extensions.append(ext)
            self.save_installed_extensions(extensions)
        self.log(f"拡張をインストールしました: {ext.id} ({ext.version})")
        return ext

    def uninstall_extension(self, extension_id: str) -> bool:
        with self._lock:
            extensions = self.get_installed_extensions()
            remaining = [e for e in extensions if e.id != extension_id]
            if len(remaining) == len(extensions):
                return False
            self.save_installed_extensions(remaining)
        return True

    def update_source_script(self, extension_id: str, source_script: str):
        """取得したスクリプト本体をキャッシュとして保存"""
        with self._lock:
            extensions = self.get_installed_extensions()
            for ext in extensions:
                if ext.id == extension_id:
                    ext.source_script = source_script
            self.save_installed_extensions(extensions)

    # ========================================
    # リポジトリ
    # ========================================

    def download_source_script(self, ext: InstalledExtension) -> Optional[str]:
        """
        拡張スクリプト本体をダウンロード

        Returns:
            スクリプト文字列（取得失敗・短すぎる場合は None）
        """
        if not ext.repo_base_url or not ext.id:
            self.log("Cannot download source script - missing repoBaseUrl or id", "error")
            return None

        url = ext.script_url
        self.log(f"Downloading source script from: {url}")
        try:
            response = self.http_client.get(url, headers={
                'User-Agent': EXTENSION_USER_AGENT,
                'Accept': '*/*',
            })
            script = response.text
        except requests.exceptions.RequestException as e:
            self.log(f"Error downloading source script: {e}", "error")
            return None

        if not script or len(script) < MIN_SOURCE_SCRIPT_LENGTH:
            self.log("Invalid source script content", "error")
            return None

        self.log(f"Downloaded source script, length: {len(script)}")
        return script

    def fetch_repository_versioning(self, base_url: str) -> Optional[Dict[str, Any]]:
        """リポジトリの versioning.json を取得"""
        try:
            response = self.http_client.get(f"{base_url.rstrip('/')}/versioning.json")
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self.log(f"Failed to fetch from {base_url}: {e}", "error")
            return None

    def fetch_all_extensions(self, repositories: List[Dict[str, str]]) -> Dict[str, List[Dict[str, Any]]]:
        """
        全リポジトリの拡張一覧を並列に取得

        Args:
            repositories: {'id', 'name', 'base_url'} のリスト

        Returns:
            リポジトリID → 拡張エントリのリスト（取得に失敗したリポジトリは含まない）
        """
        results: Dict[str, List[Dict[str, Any]]] = {}
        if not repositories:
            return results

        with ThreadPoolExecutor(max_workers=min(4, len(repositories)),
                                thread_name_prefix="Repository-") as executor:
            futures = {
                repo['id']: executor.submit(self.fetch_repository_versioning,
                                            repo.get('base_url') or repo.get('baseUrl', ''))
                for repo in repositories
            }
            for repo_id, future in futures.items():
                versioning = future.result()
                if versioning and versioning.get('sources'):
                    results[repo_id] = list(versioning['sources'])
        return results

    # ========================================
    # 拡張の状態
    # ========================================

    def get_extension_state(self, extension_id: str, key: str) -> Any:
        raw = self.store.get_item(f"{EXTENSION_STATE_PREFIX}{extension_id}_{key}")
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            self.log(f"Error getting extension state for {extension_id}/{key}: {e}", "error")
            return None

    def set_extension_state(self, extension_id: str, key: str, value: Any):
        self.store.set_item(
            f"{EXTENSION_STATE_PREFIX}{extension_id}_{key}",
            json.dumps(value, ensure_ascii=False),
        )
