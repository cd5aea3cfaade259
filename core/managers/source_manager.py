# -*- coding: utf-8 -*-
"""
ソースマネージャー - 拡張ブリッジ経由のカタログ・チャプター取得

責任:
1. 拡張の遅延ロード（スクリプト未取得ならダウンロードしてキャッシュ）
2. カタログ系メソッド（ホーム・検索・詳細・チャプター・タグ）の正規化
3. ページURLの解決と画像取得（IChapterPageResolver の実装）
4. 拡張の設定メニューと状態の操作

カタログ系の操作は失敗時に空の結果を返す。
DRM復号の失敗は呼び出し元（ダウンロードオーケストレーター）に例外として伝える。
"""

import base64
import traceback
from typing import Any, Callable, Dict, List, Optional

import requests

from config.constants import IMAGE_ACCEPT_HEADER, PROXY_USER_AGENT
from core.communication.extension_bridge import ExtensionBridge
from core.errors.error_types import BridgeError, DrmDecodeError, MethodNotFoundError
from core.interfaces import IChapterPageResolver
from core.managers.extension_store import ExtensionStore
from core.models.extension import InstalledExtension
from core.network.http_client import HttpClient
from core.sandbox.capabilities import get_field


def _empty_page() -> Dict[str, Any]:
    return {'results': [], 'metadata': None}


def _normalize_manga(item: Any, extension_id: str) -> Dict[str, Any]:
    manga_id = get_field(item, 'mangaId', 'manga_id', 'id')
    return {
        'id': manga_id,
        'mangaId': manga_id,
        'title': get_field(item, 'title', default='') or '',
        'image': get_field(item, 'image', default='') or '',
        'subtitle': get_field(item, 'subtitle', default='') or '',
        'extensionId': extension_id,
    }


class SourceManager(IChapterPageResolver):
    """拡張ブリッジを使うソースサービス"""

    def __init__(self, bridge: ExtensionBridge,
                 extension_store: ExtensionStore,
                 http_client: Optional[HttpClient] = None,
                 logger: Callable[[str, str], None] = None):
        self.bridge = bridge
        self.extension_store = extension_store
        self.http_client = http_client or extension_store.http_client
        self.logger = logger

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[SourceManager] {message}", level)

    # ========================================
    # 拡張のロード
    # ========================================

    def ensure_extension_loaded(self, ext: InstalledExtension) -> bool:
        """
        拡張がロード済みでなければロードする

        Returns:
            ロード済み（または今回ロードに成功）なら True
        """
        if self.bridge.is_loaded(ext.id):
            return True

        source_script = ext.source_script
        if not source_script:
            source_script = self.extension_store.download_source_script(ext)
            if not source_script:
                return False
            ext.source_script = source_script
            self.extension_store.update_source_script(ext.id, source_script)

        return self.bridge.load_extension(ext.id, source_script)

    def _prepare(self, extension_id: str) -> Optional[InstalledExtension]:
        ext = self.extension_store.find_extension(extension_id)
        if ext is None:
            self.log(f"Extension {extension_id} not found", "error")
            return None
        if not self.ensure_extension_loaded(ext):
            return None
        return ext

    def _run(self, extension_id: str, method: str, args: Optional[List[Any]] = None) -> Any:
        return self.bridge.run_extension_method(extension_id, method, args or [])

    # ========================================
    # カタログ
    # ========================================

    def get_home_sections(self, extension_id: str) -> List[Dict[str, Any]]:
        ext = self.extension_store.find_extension(extension_id)
        if ext is None:
            self.log(f"Extension {extension_id} not found", "error")
            return []

        if not self.ensure_extension_loaded(ext):
            return [{
                'id': f"{extension_id}-browse",
                'title': f"Browse {ext.name}",
                'items': [],
                'containsMoreItems': False,
            }]

        try:
            result = self._run(extension_id, 'getHomePageSections')
        except BridgeError as e:
            self.log(f"Error getting home sections for {extension_id}: {e}", "error")
            return []

        if not isinstance(result, list):
            return []
        return [{
            'id': get_field(section, 'id'),
            'title': get_field(section, 'title', default=''),
            'items': [_normalize_manga(item, extension_id)
                      for item in get_field(section, 'items', default=[]) or []],
            'containsMoreItems': bool(get_field(section, 'containsMoreItems', default=False)),
            'type': get_field(section, 'type'),
        } for section in result]

    def _paged(self, extension_id: str, method: str, args: List[Any], what: str) -> Dict[str, Any]:
        if self._prepare(extension_id) is None:
            return _empty_page()
        try:
            result = self._run(extension_id, method, args)
        except BridgeError as e:
            self.log(f"{what} error for {extension_id}: {e}", "error")
            return _empty_page()

        results = get_field(result, 'results') if result else None
        if not results:
            return _empty_page()
        return {
            'results': [_normalize_manga(item, extension_id) for item in results],
            'metadata': get_field(result, 'metadata'),
        }

    def get_view_more_items(self, extension_id: str, section_id: str, metadata: Any = None) -> Dict[str, Any]:
        return self._paged(extension_id, 'getViewMoreItems', [section_id, metadata], 'getViewMoreItems')

    def search_manga(self, extension_id: str, query: str, metadata: Any = None) -> Dict[str, Any]:
        """タイトル検索（結果: {'results', 'metadata'}、metadata は次ページ取得用）"""
        return self._paged(extension_id, 'getSearchResults',
                           [{'title': query, 'includedTags': []}, metadata], 'Search')

    def search_by_tag(self, extension_id: str, tag_id: str, metadata: Any = None) -> Dict[str, Any]:
        return self._paged(extension_id, 'getSearchResults',
                           [{'title': '', 'includedTags': [{'id': tag_id, 'label': ''}]}, metadata],
                           'searchByTag')

    def get_manga_details(self, extension_id: str, manga_id: str) -> Optional[Dict[str, Any]]:
        if self._prepare(extension_id) is None:
            return None
        try:
            result = self._run(extension_id, 'getMangaDetails', [manga_id])
        except BridgeError as e:
            self.log(f"Error getting manga details: {e}", "error")
            return None
        if not result:
            return None

        info = get_field(result, 'mangaInfo', default=result)
        return {
            'id': manga_id,
            'titles': get_field(info, 'titles') or [get_field(info, 'title')],
            'image': get_field(info, 'image', default='') or '',
            'author': get_field(info, 'author', default='') or '',
            'artist': get_field(info, 'artist', default='') or '',
            'desc': get_field(info, 'desc', default='') or '',
            'status': get_field(info, 'status', default='') or '',
            'tags': get_field(info, 'tags') or [],
        }

    def get_chapters(self, extension_id: str, manga_id: str) -> List[Dict[str, Any]]:
        if self._prepare(extension_id) is None:
            return []
        try:
            result = self._run(extension_id, 'getChapters', [manga_id])
        except BridgeError as e:
            self.log(f"Error getting chapters: {e}", "error")
            return []
        if not isinstance(result, list):
            return []

        return [{
            'id': str(get_field(chapter, 'id')),
            'chapNum': get_field(chapter, 'chapNum', 'chap_num', default=0) or 0,
            'name': get_field(chapter, 'name', default='') or '',
            'langCode': get_field(chapter, 'langCode', 'lang_code', default='') or '',
            'time': get_field(chapter, 'time', default='') or '',
            'group': get_field(chapter, 'group', default='') or '',
        } for chapter in result]

    def get_tags(self, extension_id: str) -> List[Dict[str, str]]:
        """タグセクションを1つのリストに平坦化"""
        if self._prepare(extension_id) is None:
            return []
        try:
            result = self._run(extension_id, 'getSearchTags')
        except MethodNotFoundError:
            return []
        except BridgeError as e:
            self.log(f"Error getting tags for {extension_id}: {e}", "error")
            return []
        if not isinstance(result, list):
            return []

        tags = []
        for section in result:
            for tag in get_field(section, 'tags') or []:
                tags.append({
                    'id': get_field(tag, 'id', default='') or '',
                    'label': get_field(tag, 'label', 'title', default='') or '',
                })
        return tags

    # ========================================
    # ページと画像（IChapterPageResolver）
    # ========================================

    def get_chapter_pages(self, source_id: str, manga_id: str, chapter_id: str) -> List[str]:
        if self._prepare(source_id) is None:
            return []
        try:
            result = self._run(source_id, 'getChapterDetails', [manga_id, chapter_id])
        except BridgeError as e:
            self.log(f"Error getting chapter pages: {e}", "error")
            return []
        pages = get_field(result, 'pages') if result else None
        return [str(page) for page in pages] if pages else []

    def decrypt_drm_image(self, extension_id: str, url: str) -> str:
        """
        DRM画像を拡張自身のリクエストマネージャで取得・復号

        Raises:
            DrmDecodeError: 拡張が利用できない、または復号結果が空
            BridgeError: ブリッジ経由の失敗（タイムアウト等）
        """
        if self._prepare(extension_id) is None:
            raise DrmDecodeError(f"Extension not available: {extension_id}")
        result = self._run(extension_id, 'decryptDrmImage', [url])
        if not result:
            raise DrmDecodeError(f"Empty DRM result: {url}")
        return str(result)

    def fetch_image(self, extension_id: str, url: str) -> Optional[str]:
        return self.fetch_image_through_extension(extension_id, url)

    def fetch_image_through_extension(self, extension_id: str, url: str) -> Optional[str]:
        """
        拡張のヘッダー・クッキーを使って画像を取得

        拡張経由で取得できない場合は既定のヘッダーで直接取得する。

        Returns:
            data URI（全て失敗した場合は None）
        """
        ext = self.extension_store.find_extension(extension_id)
        if ext is None:
            return None

        if self.ensure_extension_loaded(ext):
            try:
                result = self._run(extension_id, 'fetchImage', [url])
                if result:
                    return str(result)
            except BridgeError as e:
                self.log(f"Error fetching image via extension: {e}", "warning")

        self.log("Using direct fetch for image", "debug")
        try:
            response = self.http_client.get(url, headers={
                'User-Agent': PROXY_USER_AGENT,
                'Accept': IMAGE_ACCEPT_HEADER,
            })
        except requests.exceptions.RequestException as e:
            self.log(f"Error fetching image directly: {e}", "error")
            return None
        return 'data:image/jpeg;base64,' + base64.b64encode(response.content).decode('ascii')

    # ========================================
    # 設定メニュー
    # ========================================

    def has_extension_settings(self, extension_id: str) -> bool:
        if self._prepare(extension_id) is None:
            return False
        try:
            return self._run(extension_id, 'getSourceMenu') is not None
        except BridgeError:
            return False

    def get_extension_settings(self, extension_id: str) -> Optional[Dict[str, Any]]:
        """
        解決済みの設定メニューを取得

        Returns:
            {'id', 'header', 'sections': [{'id', 'header', 'rows', 'isHidden'}]}
        """
        if self._prepare(extension_id) is None:
            return None
        try:
            result = self._run(extension_id, 'getSourceMenu')
        except MethodNotFoundError:
            return None
        except BridgeError as e:
            self.log(f"Error getting extension settings for {extension_id}: {e}", "error")
            return None
        if not result:
            return None

        menu_id = result.get('id') or 'main'
        return {
            'id': menu_id,
            'header': result.get('header') or 'Source Settings',
            'sections': [{
                'id': menu_id,
                'header': result.get('header'),
                'rows': result.get('rows') or [],
                'isHidden': result.get('isHidden'),
            }],
        }

    def update_extension_setting(self, extension_id: str, setting_path: str, value: Any) -> bool:
        if self._prepare(extension_id) is None:
            return False
        try:
            return self._run(extension_id, 'setSettingValue', [setting_path, value]) is True
        except BridgeError as e:
            self.log(f"Error updating setting {setting_path} for {extension_id}: {e}", "error")
            return False

    def invoke_extension_setting_action(self, extension_id: str, setting_path: str) -> bool:
        if self._prepare(extension_id) is None:
            return False
        try:
            return self._run(extension_id, 'invokeSettingAction', [setting_path]) is True
        except BridgeError as e:
            self.log(f"Error invoking setting action {setting_path} for {extension_id}: {e}", "error")
            self.log(f"詳細: {traceback.format_exc()}", "debug")
            return False

    # ========================================
    # 拡張の状態
    # ========================================

    def get_extension_state(self, extension_id: str, key: str) -> Any:
        return self.extension_store.get_extension_state(extension_id, key)

    def set_extension_state(self, extension_id: str, key: str, value: Any):
        self.extension_store.set_extension_state(extension_id, key, value)
