# -*- coding: utf-8 -*-
"""
サンドボックスホスト - 拡張スクリプトの実行側

責任:
1. 拡張スクリプトを隔離した名前空間で実行し、拡張クラスを特定・生成
2. loadExtension / runMethod 要求をワーカープールで処理
3. 特殊メソッド（ホーム画面、チャプター詳細、DRM画像、設定メニュー）の結果整形

設計原則:
- 外部とのやり取りは全てトランスポートのJSONメッセージ経由
- 失敗は {requestId, error, errorType} の構造化応答で返し、ホストは継続
"""

import base64
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional

from config.constants import DRM_FRAGMENT_MARKER, DRM_SCHEME, NETWORK_TIMEOUT, STATE_TIMEOUT
from core.communication.message_transport import MessageEndpoint
from core.communication.rpc_channel import RpcChannel
from core.errors.error_types import (
    BridgeResult,
    BridgeStage,
    DrmDecodeError,
    ExtensionNotLoadedError,
    MethodNotFoundError,
    SandboxLoadError,
)
from core.imaging.image_codec import to_bytes
from core.sandbox import settings_menu
from core.sandbox.capabilities import App, get_field, resolve_awaitable, sdk_namespace
from core.sandbox.html_helper import cheerio as default_cheerio
from core.sandbox.source_registry import SourceRegistry
from core.utils.naming import to_camel_case, to_snake_case

# 拡張側に実装が無くても呼べるメソッド
NO_IMPLEMENTATION_REQUIRED = (
    'set_setting_value',
    'invoke_setting_action',
    'decrypt_drm_image',
    'fetch_image',
)


def page_url(page: Any) -> str:
    """ページ要素（文字列または url / image / image_url / imageUrl を持つ値）をURLに変換"""
    if isinstance(page, str):
        return page
    url = get_field(page, 'url', 'image', 'image_url', 'imageUrl')
    return str(url) if url is not None else str(page)


def tag_drm_url(url: str, extension_id: str) -> str:
    """DRM付きURLに drm://<拡張ID>/ を付け、ダウンロード時に復号経路へ回す"""
    if url and DRM_FRAGMENT_MARKER in url:
        return f"{DRM_SCHEME}{extension_id}/{url}"
    return url


def to_data_uri(data: bytes) -> str:
    return 'data:image/jpeg;base64,' + base64.b64encode(data).decode('ascii')


class SandboxHost:
    """
    拡張スクリプトの実行コンテキスト

    使用例:
        host_end, sandbox_end = create_transport_pair()
        sandbox = SandboxHost(sandbox_end)
        sandbox.start()   # ready を通知
    """

    def __init__(self, endpoint: MessageEndpoint,
                 max_workers: int = 4,
                 network_timeout: float = NETWORK_TIMEOUT,
                 state_timeout: float = STATE_TIMEOUT,
                 logger: Callable[[str, str], None] = None):
        """
        Args:
            endpoint: サンドボックス側のトランスポート
            max_workers: 同時に処理する要求の上限
            network_timeout: fetchProxy の応答待ち秒数
            state_timeout: stateStore / stateRetrieve の応答待ち秒数
            logger: サンドボックス内部のログ出力関数（省略時はホストへ転送）
        """
        self.endpoint = endpoint
        self.logger = logger
        self.rpc = RpcChannel(endpoint.post, default_timeout=network_timeout,
                              logger=logger, name="SandboxRpc")
        self.app = App(self.rpc, log=self.log,
                       network_timeout=network_timeout, state_timeout=state_timeout)
        self.cheerio = default_cheerio

        self.registry = SourceRegistry()
        self.loaded_extensions: Dict[str, Any] = {}
        self._load_lock = threading.Lock()

        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    # ========================================
    # ライフサイクル
    # ========================================

    def start(self):
        """受信を開始し、ホストに ready を通知"""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="Sandbox-"
            )
        self.endpoint.set_handler(self._on_message)
        self.endpoint.start()
        self.endpoint.post({'type': 'ready'})
        self.log("Extension Runner initialized")

    def stop(self):
        self.rpc.close("Sandbox stopped")
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self.endpoint.stop()

    def log(self, message: str):
        """診断ログ（ホストへ {type: 'log'} として送る）"""
        if self.logger:
            self.logger(f"[Sandbox] {message}", "debug")
        else:
            self.endpoint.post({'type': 'log', 'result': message})

    # ========================================
    # メッセージ処理
    # ========================================

    def _on_message(self, message: Dict[str, Any]):
        message_type = message.get('type')

        if message_type is None:
            self.rpc.handle_response(message)
        elif message_type == 'loadExtension':
            self._executor.submit(self._handle_load, message)
        elif message_type == 'runMethod':
            self._executor.submit(self._handle_run, message)
        else:
            self.log(f"Unknown message type: {message_type}")

    def _handle_load(self, message: Dict[str, Any]):
        result = self.load_extension(
            str(message.get('extensionId', '')),
            message.get('sourceScript') or '',
        )
        self.endpoint.post(result.to_response(message.get('requestId')))

    def _handle_run(self, message: Dict[str, Any]):
        result = self.run_method(
            str(message.get('extensionId', '')),
            str(message.get('method', '')),
            message.get('args') or [],
        )
        self.endpoint.post(result.to_response(message.get('requestId')))

    # ========================================
    # ロード
    # ========================================

    def load_extension(self, extension_id: str, source_script: str) -> BridgeResult:
        """
        拡張スクリプトを実行してインスタンスを登録

        Returns:
            成功時 data=True。失敗時はその拡張だけを未ロード状態にする。
        """
        self.log(f"Loading extension: {extension_id}")
        try:
            with self._load_lock:
                instance = self._load(extension_id, source_script)
                self.loaded_extensions[extension_id] = instance
            self.log(f"Extension loaded successfully: {extension_id}")
            return BridgeResult.success_result(True, stage=BridgeStage.LOAD)

        except Exception as e:
            self.loaded_extensions.pop(extension_id, None)
            error = e if isinstance(e, SandboxLoadError) else SandboxLoadError(
                f"{type(e).__name__}: {e}", extension_id=extension_id)
            self.log(f"Failed to load extension: {error}")
            return BridgeResult.failure_result(error, stage=BridgeStage.LOAD)

    def _load(self, extension_id: str, source_script: str) -> Any:
        if not source_script:
            raise SandboxLoadError("Empty source script", extension_id=extension_id)

        # 前の拡張の登録が残らないようにする
        self.registry.clear()
        namespace = sdk_namespace(self.app, self.cheerio, self.registry)
        code = compile(source_script, f"<extension:{extension_id}>", "exec")
        exec(code, namespace)

        # `Sources = {...}` と差し替えたスクリプトにも対応
        exported = namespace.get('Sources')
        if exported is not self.registry and isinstance(exported, Mapping):
            self.registry.update(exported)

        self.log(f"Available source classes: {', '.join(self.registry.keys())}")
        source_class = self.registry.find(extension_id)
        if source_class is None:
            raise SandboxLoadError("No Sources found after loading extension", extension_id=extension_id)

        instance = self._instantiate(source_class)

        if getattr(instance, 'cheerio', None) is None:
            try:
                instance.cheerio = self.cheerio
            except AttributeError:
                pass

        state_manager = get_field(instance, 'state_manager', 'stateManager')
        if state_manager is not None and callable(getattr(state_manager, 'set_extension_id', None)):
            state_manager.set_extension_id(extension_id)

        return instance

    def _instantiate(self, source_class: Any) -> Any:
        if not callable(source_class):
            return source_class
        try:
            return source_class(self.cheerio)
        except TypeError:
            # cheerio を受け取らないコンストラクタ
            return source_class()

    # ========================================
    # メソッド実行
    # ========================================

    def is_loaded(self, extension_id: str) -> bool:
        return extension_id in self.loaded_extensions

    def run_method(self, extension_id: str, method: str, args: Optional[List[Any]] = None) -> BridgeResult:
        """
        拡張のメソッドを実行

        method は camelCase（getChapterDetails）でも snake_case（get_chapter_details）でもよい。
        """
        args = list(args or [])
        try:
            instance = self.loaded_extensions.get(extension_id)
            if instance is None:
                raise ExtensionNotLoadedError(f"Extension not loaded: {extension_id}")

            name = to_snake_case(method)
            func = self._find_method(instance, method)
            if func is None and name not in NO_IMPLEMENTATION_REQUIRED:
                raise MethodNotFoundError(f"Method not found: {method}")

            self.log(f"Running method: {extension_id} {name}")
            handler = getattr(self, f"_run_{name}", None)
            if handler is not None:
                result = handler(extension_id, instance, func, args)
            else:
                result = resolve_awaitable(func(*args))

            self.log(f"Method completed: {name}")
            return BridgeResult.success_result(result, stage=BridgeStage.RUN_METHOD)

        except Exception as e:
            self.log(f"Method failed: {method} - {e}")
            return BridgeResult.failure_result(e, stage=BridgeStage.RUN_METHOD)

    @staticmethod
    def _find_method(instance: Any, method: str) -> Optional[Callable]:
        snake = to_snake_case(method)
        for candidate in (snake, method, to_camel_case(snake)):
            func = getattr(instance, candidate, None)
            if callable(func):
                return func
        return None

    def _run_get_home_page_sections(self, extension_id, instance, func, args):
        sections: Dict[Any, Dict[str, Any]] = {}

        def on_section(section):
            section_id = get_field(section, 'id')
            items = get_field(section, 'items', default=[]) or []
            self.log(f"Section callback: {section_id} items: {len(items)}")
            # 同じIDの再通知は内容を置き換える（並び順は最初の通知のまま）
            sections[section_id] = {
                'id': section_id,
                'title': get_field(section, 'title', default=''),
                'items': [{
                    'mangaId': get_field(item, 'mangaId', 'manga_id', 'id'),
                    'id': get_field(item, 'mangaId', 'manga_id', 'id'),
                    'title': get_field(item, 'title', default=''),
                    'image': get_field(item, 'image', default=''),
                    'subtitle': get_field(item, 'subtitle', default=''),
                } for item in items],
                'containsMoreItems': bool(get_field(section, 'contains_more_items',
                                                    'containsMoreItems', default=False)),
                'type': get_field(section, 'type'),
            }

        resolve_awaitable(func(on_section, *args))
        self.log(f"getHomePageSections completed, sections found: {len(sections)}")
        return list(sections.values())

    def _run_get_chapter_details(self, extension_id, instance, func, args):
        raw = resolve_awaitable(func(*args))

        pages: List[Any] = []
        if isinstance(raw, (list, tuple)):
            pages = list(raw)
        else:
            raw_pages = get_field(raw, 'pages')
            if isinstance(raw_pages, (list, tuple)):
                pages = list(raw_pages)

        urls = [tag_drm_url(page_url(page), extension_id) for page in pages]
        self.log(f"getChapterDetails pages count: {len(urls)}")
        return {'pages': urls}

    def _fetch_through_extension(self, instance, image_url: str, require_manager: bool) -> str:
        manager = get_field(instance, 'request_manager', 'requestManager')
        if manager is None:
            if require_manager:
                raise DrmDecodeError("Extension has no request manager")
            manager = self.app.create_request_manager()

        response = manager.schedule(self.app.create_request({'url': image_url, 'method': 'GET'}), 1)
        raw = to_bytes(get_field(response, 'rawData', 'raw_data')) if response else None
        if not raw:
            raise DrmDecodeError("No rawData in response")
        self.log(f"Image fetched successfully, size: {len(raw)}")
        return to_data_uri(raw)

    def _run_decrypt_drm_image(self, extension_id, instance, func, args):
        self.log("Decrypting DRM image on-demand")
        return self._fetch_through_extension(instance, str(args[0]), require_manager=True)

    def _run_fetch_image(self, extension_id, instance, func, args):
        return self._fetch_through_extension(instance, str(args[0]), require_manager=False)

    def _source_menu(self, instance) -> Any:
        get_menu = self._find_method(instance, 'get_source_menu')
        if get_menu is None:
            return None
        return resolve_awaitable(get_menu())

    def _run_get_source_menu(self, extension_id, instance, func, args):
        menu = resolve_awaitable(func(*args))
        return settings_menu.resolve_menu(menu, self.log)

    def _run_set_setting_value(self, extension_id, instance, func, args):
        path, value = args[0], args[1] if len(args) > 1 else None
        menu = self._source_menu(instance)
        if menu is None:
            return False
        return settings_menu.set_setting_value_in_menu(menu, path, value, self.log)

    def _run_invoke_setting_action(self, extension_id, instance, func, args):
        menu = self._source_menu(instance)
        if menu is None:
            return False
        return settings_menu.invoke_setting_action(menu, args[0], self.log)
