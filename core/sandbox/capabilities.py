# -*- coding: utf-8 -*-
"""
拡張スクリプトに公開する機能（App オブジェクト）

拡張スクリプトが触れられるのはここで定義した機能だけで、
ネットワークと永続ストレージは全て RPC でホストに委譲する。

スクリプト側の呼び出しは同期的に行う（schedule() は応答まで待機して辞書を返す）。
"""

import asyncio
import base64
import binascii
import builtins
import inspect
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Mapping, Optional

from config.constants import (
    DRM_QUERY_MARKER,
    EXTENSION_USER_AGENT,
    IMAGE_URL_PATTERN,
    KEYCHAIN_PREFIX,
    NETWORK_TIMEOUT,
    STATE_TIMEOUT,
)
from core.errors.error_types import BridgeError
from core.imaging.image_codec import Canvas, RasterImage


# ========================================
# SDK 列挙型
# ========================================

class ContentRating(IntEnum):
    EVERYONE = 0
    MATURE = 1
    ADULT = 2


class LanguageCode(str, Enum):
    ENGLISH = 'en'
    VIETNAMESE = 'vi'
    JAPANESE = 'ja'
    CHINESE = 'zh'
    KOREAN = 'ko'
    SPANISH = 'es'
    PORTUGUESE = 'pt'
    FRENCH = 'fr'
    GERMAN = 'de'
    RUSSIAN = 'ru'
    INDONESIAN = 'id'
    THAI = 'th'
    UNKNOWN = '_unknown'


class MangaStatus(IntEnum):
    ONGOING = 0
    COMPLETED = 1
    UNKNOWN = 2
    ABANDONED = 3
    HIATUS = 4


class HomeSectionType(str, Enum):
    SINGLE_ROW_NORMAL = 'singleRowNormal'
    SINGLE_ROW_LARGE = 'singleRowLarge'
    DOUBLE_ROW = 'doubleRow'
    FEATURED = 'featured'


class TagType(str, Enum):
    BLUE = 'default'
    GREEN = 'success'
    GREY = 'secondary'
    YELLOW = 'warning'
    RED = 'danger'


class Source:
    """拡張クラスの基底（cheerio を受け取って保持するだけ）"""

    def __init__(self, cheerio=None):
        self.cheerio = cheerio


# ========================================
# 共通ヘルパー
# ========================================

def get_field(obj: Any, *names: str, default: Any = None) -> Any:
    """辞書・オブジェクトのどちらからでも、最初に見つかったフィールドを取り出す"""
    if obj is None:
        return default
    for name in names:
        if isinstance(obj, Mapping):
            if name in obj and obj[name] is not None:
                return obj[name]
        else:
            value = getattr(obj, name, None)
            if value is not None:
                return value
    return default


def resolve_awaitable(value: Any) -> Any:
    """拡張コードが返したコルーチンを完了まで実行する"""
    if inspect.isawaitable(value):
        async def _await():
            return await value
        return asyncio.run(_await())
    return value


def is_binding(value: Any) -> bool:
    """DUIBinding（get を持つ値）か判定"""
    return value is not None and not isinstance(value, Mapping) and callable(getattr(value, 'get', None))


def is_image_url(url: str) -> bool:
    return DRM_QUERY_MARKER in url or IMAGE_URL_PATTERN.search(url) is not None


class DUIBinding:
    """設定値の読み書き（get / set）"""

    def __init__(self, get: Callable[[], Any], set: Optional[Callable[[Any], Any]] = None):
        self._get = get
        self._set = set

    def get(self) -> Any:
        return self._get()

    def set(self, value: Any) -> Any:
        if self._set is None:
            raise BridgeError("Binding is read-only")
        return self._set(value)


# ========================================
# リクエストマネージャ
# ========================================

class RequestManager:
    """
    拡張スクリプトのHTTPリクエスト窓口

    インターセプタ（intercept_request / intercept_response）を通し、
    実際の通信は fetchProxy でホストに委譲する。
    """

    def __init__(self, app: 'App', interceptor: Any = None, request_timeout: Optional[float] = None):
        self.app = app
        self.interceptor = interceptor
        self.request_timeout = request_timeout

    def get_default_user_agent(self) -> str:
        return EXTENSION_USER_AGENT

    def schedule(self, request: Dict[str, Any], retry_count: int = 1) -> Dict[str, Any]:
        """
        リクエストを実行

        Returns:
            {'data': str, 'status': int, 'rawData': bytes | None, 'request': dict}
            失敗時は {'data': '', 'status': 500}
        """
        final_request = request
        intercept_request = self._interceptor_hook('intercept_request', 'interceptRequest')
        if intercept_request:
            try:
                final_request = resolve_awaitable(intercept_request(request)) or request
            except Exception as e:
                self.app.log(f"Interceptor error: {e}")

        url = str(get_field(final_request, 'url', default=''))
        options = {
            'method': get_field(final_request, 'method', default='GET'),
            'headers': dict(get_field(final_request, 'headers', default={}) or {}),
            'body': get_field(final_request, 'body'),
            'data': get_field(final_request, 'data'),
        }
        if is_image_url(url):
            options['responseType'] = 'arraybuffer'

        try:
            response = self.app.proxy_fetch(url, options)
        except Exception as e:
            self.app.log(f"Request failed: {e}")
            return {'data': '', 'status': 500}

        result = {
            'data': response.get('data') or '',
            'status': response.get('status'),
            'rawData': None,
            'request': final_request,
        }
        if response.get('isBinary') and response.get('rawData'):
            try:
                result['rawData'] = base64.b64decode(response['rawData'])
            except (binascii.Error, ValueError) as e:
                self.app.log(f"Error decoding binary response: {e}")

        intercept_response = self._interceptor_hook('intercept_response', 'interceptResponse')
        if intercept_response:
            try:
                result = resolve_awaitable(intercept_response(result)) or result
            except Exception as e:
                self.app.log(f"Response interceptor error: {e}")

        return result

    def _interceptor_hook(self, *names: str) -> Optional[Callable]:
        hook = get_field(self.interceptor, *names)
        return hook if callable(hook) else None


# ========================================
# 状態マネージャ
# ========================================

class Keychain:
    def __init__(self, manager: 'SourceStateManager'):
        self._manager = manager

    def store(self, key: str, value: Any):
        return self._manager.store(KEYCHAIN_PREFIX + key, value)

    def retrieve(self, key: str) -> Any:
        return self._manager.retrieve(KEYCHAIN_PREFIX + key)


class SourceStateManager:
    """
    拡張ごとの永続状態

    拡張IDが設定されるまでと、ホストの応答がタイムアウトした場合はメモリに保持する。
    """

    def __init__(self, app: 'App', timeout: float = STATE_TIMEOUT):
        self.app = app
        self.timeout = timeout
        self.extension_id: Optional[str] = None
        self._memory: Dict[str, Any] = {}
        self.keychain = Keychain(self)

    def set_extension_id(self, extension_id: str):
        self.extension_id = extension_id

    def store(self, key: str, value: Any):
        if not self.extension_id:
            self._memory[key] = value
            return None
        try:
            self.app.rpc.call('stateStore', {
                'extensionId': self.extension_id,
                'key': key,
                'value': value,
            }, timeout=self.timeout)
        except (BridgeError, FutureTimeoutError) as e:
            self.app.log(f"State store fallback to memory: {key} ({e})")
            self._memory[key] = value
        return None

    def retrieve(self, key: str) -> Any:
        if not self.extension_id:
            return self._memory.get(key)
        try:
            return self.app.rpc.call('stateRetrieve', {
                'extensionId': self.extension_id,
                'key': key,
            }, timeout=self.timeout)
        except (BridgeError, FutureTimeoutError) as e:
            self.app.log(f"State retrieve fallback to memory: {key} ({e})")
            return self._memory.get(key)


# ========================================
# App
# ========================================

def _copy(config: Optional[Mapping]) -> Dict[str, Any]:
    return dict(config or {})


class App:
    """
    拡張スクリプトに注入する機能オブジェクト

    Args:
        rpc: サンドボックス側の RpcChannel（fetchProxy / stateStore / stateRetrieve を送る）
        log: 診断ログ関数
        network_timeout: fetchProxy のタイムアウト秒数
        state_timeout: 状態保存のタイムアウト秒数
    """

    def __init__(self, rpc, log: Callable[[str], None] = None,
                 network_timeout: float = NETWORK_TIMEOUT,
                 state_timeout: float = STATE_TIMEOUT):
        self.rpc = rpc
        self._log = log
        self.network_timeout = network_timeout
        self.state_timeout = state_timeout

    def log(self, message: str):
        if self._log:
            self._log(message)

    def proxy_fetch(self, url: str, options: Dict[str, Any]) -> Dict[str, Any]:
        """ホスト経由のfetch（応答まで待機）"""
        return self.rpc.call('fetchProxy', {'url': url, 'options': options},
                             timeout=self.network_timeout) or {}

    # --- リクエスト ---
    def create_request(self, config: Mapping) -> Dict[str, Any]:
        request = _copy(config)
        request.setdefault('method', 'GET')
        return request

    def create_request_manager(self, config: Optional[Mapping] = None) -> RequestManager:
        config = config or {}
        return RequestManager(
            self,
            interceptor=get_field(config, 'interceptor'),
            request_timeout=get_field(config, 'request_timeout', 'requestTimeout'),
        )

    def create_source_state_manager(self, config: Optional[Mapping] = None) -> SourceStateManager:
        return SourceStateManager(self, timeout=self.state_timeout)

    # --- カタログ ---
    def create_home_section(self, config: Mapping) -> Dict[str, Any]:
        section = _copy(config)
        section['items'] = list(section.get('items') or [])
        return section

    def create_partial_source_manga(self, config: Mapping) -> Dict[str, Any]:
        manga_id = get_field(config, 'mangaId', 'manga_id', 'id')
        return {
            'mangaId': manga_id,
            'id': manga_id,
            'title': get_field(config, 'title', default=''),
            'image': get_field(config, 'image', default=''),
            'subtitle': get_field(config, 'subtitle', default=''),
        }

    def create_source_manga(self, config: Mapping) -> Dict[str, Any]:
        info = _copy(get_field(config, 'mangaInfo', 'manga_info'))
        manga = dict(info)
        manga['id'] = get_field(config, 'id')
        manga['mangaInfo'] = info
        return manga

    def create_manga_info(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_chapter(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_chapter_details(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_paged_results(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_tag_section(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_tag(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    # --- 設定UI（DUI） ---
    def create_dui_section(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_navigation_button(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_form(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_select(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_binding(self, config: Mapping) -> DUIBinding:
        return DUIBinding(get=get_field(config, 'get'), set=get_field(config, 'set'))

    def create_dui_button(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_switch(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_input_field(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_secure_input_field(self, config: Mapping) -> Dict[str, Any]:
        row = _copy(config)
        row['is_secure'] = True
        return row

    def create_dui_label(self, config: Mapping) -> Dict[str, Any]:
        row = _copy(config)
        row['is_label'] = True
        return row

    def create_dui_multiline_label(self, config: Mapping) -> Dict[str, Any]:
        return self.create_dui_label(config)

    def create_dui_stepper(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    def create_dui_link(self, config: Mapping) -> Dict[str, Any]:
        return _copy(config)

    # --- 画像 ---
    def create_pb_image(self, config: Mapping) -> RasterImage:
        return RasterImage.from_data(get_field(config, 'data', default=b''),
                                     logger=lambda message, level: self.log(message))

    def create_pb_canvas(self) -> Canvas:
        return Canvas(logger=lambda message, level: self.log(message))


# import・ファイル・動的評価を含まない組み込み関数のみ公開する
SAFE_BUILTIN_NAMES = (
    '__build_class__', 'abs', 'all', 'any', 'bool', 'bytearray', 'bytes', 'callable', 'chr',
    'classmethod', 'dict', 'divmod', 'enumerate', 'filter', 'float', 'format', 'frozenset',
    'getattr', 'hasattr', 'hash', 'int', 'isinstance', 'issubclass', 'iter', 'len', 'list',
    'map', 'max', 'min', 'next', 'object', 'ord', 'pow', 'print', 'property', 'range', 'repr',
    'reversed', 'round', 'set', 'setattr', 'slice', 'sorted', 'staticmethod', 'str', 'sum',
    'super', 'tuple', 'type', 'zip',
    'None', 'True', 'False', 'NotImplemented', 'Ellipsis',
    'Exception', 'ArithmeticError', 'AttributeError', 'IndexError', 'KeyError', 'LookupError',
    'NotImplementedError', 'RuntimeError', 'StopIteration', 'StopAsyncIteration', 'TypeError',
    'ValueError', 'ZeroDivisionError',
)


def safe_builtins() -> Dict[str, Any]:
    return {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}


def sdk_namespace(app: App, cheerio: Any, sources: Any) -> Dict[str, Any]:
    """拡張スクリプト実行用の名前空間（注入するもの以外は何も置かない）"""
    return {
        '__builtins__': safe_builtins(),
        '__name__': 'extension',
        'App': app,
        'cheerio': cheerio,
        'Sources': sources,
        'Source': Source,
        'ContentRating': ContentRating,
        'LanguageCode': LanguageCode,
        'MangaStatus': MangaStatus,
        'HomeSectionType': HomeSectionType,
        'TagType': TagType,
    }
