# -*- coding: utf-8 -*-
"""
拡張ブリッジ（ホスト側）

責任:
1. サンドボックスへの loadExtension / runMethod 要求
2. サンドボックスからの fetchProxy / stateStore / stateRetrieve 要求の処理
3. サンドボックスの診断ログと ready 通知の受信

使用例:
    host_end, sandbox_end = create_transport_pair()
    SandboxHost(sandbox_end).start()
    bridge = ExtensionBridge(host_end, proxy, store)
    bridge.start()
    bridge.load_extension('pixiv', script)
    chapters = bridge.run_extension_method('pixiv', 'getChapters', ['123'])
"""

import json
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Set

from config.constants import (
    EXTENSION_STATE_PREFIX,
    NETWORK_METHODS,
    NETWORK_TIMEOUT,
    READY_TIMEOUT,
    RPC_TIMEOUT,
)
from core.communication.message_transport import MessageEndpoint
from core.communication.rpc_channel import RpcChannel
from core.errors.error_types import BridgeError, error_type_name
from core.interfaces import IKeyValueStore
from core.network.network_proxy import NetworkProxyAdapter
from core.utils.naming import to_snake_case


def extension_state_key(extension_id: str, key: str) -> str:
    return f"{EXTENSION_STATE_PREFIX}{extension_id}_{key}"


def _is_network_method(method: str) -> bool:
    return to_snake_case(method) in NETWORK_METHODS


class ExtensionBridge:
    """ホスト側のブリッジ"""

    def __init__(self, endpoint: MessageEndpoint,
                 proxy: NetworkProxyAdapter,
                 store: IKeyValueStore,
                 logger: Callable[[str, str], None] = None,
                 rpc_timeout: float = RPC_TIMEOUT,
                 network_timeout: float = NETWORK_TIMEOUT,
                 max_workers: int = 4):
        """
        Args:
            endpoint: ホスト側のトランスポート
            proxy: fetchProxy を実行するアダプタ
            store: 拡張の状態を保存するストア
            logger: ログ出力関数（省略可）
            rpc_timeout: loadExtension / runMethod の応答待ち秒数
            network_timeout: 画像取得・DRM復号の応答待ち秒数
            max_workers: サンドボックスからの要求を処理するスレッド数
        """
        self.endpoint = endpoint
        self.proxy = proxy
        self.store = store
        self.logger = logger
        self.rpc_timeout = rpc_timeout
        self.network_timeout = network_timeout

        self.rpc = RpcChannel(endpoint.post, default_timeout=rpc_timeout,
                              logger=logger, name="ExtensionBridge")

        self._ready = threading.Event()
        self._loaded: Set[str] = set()
        self._loaded_lock = threading.Lock()

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            'fetchProxy': self._handle_fetch_proxy,
            'stateStore': self._handle_state_store,
            'stateRetrieve': self._handle_state_retrieve,
        }
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[ExtensionBridge] {message}", level)

    # ========================================
    # ライフサイクル
    # ========================================

    def start(self):
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="Bridge-"
            )
        self.endpoint.set_handler(self._on_message)
        self.endpoint.start()

    def stop(self):
        self.rpc.close("Bridge stopped")
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self.endpoint.stop()
        with self._loaded_lock:
            self._loaded.clear()
        self._ready.clear()

    def wait_until_ready(self, timeout: float = READY_TIMEOUT) -> bool:
        """サンドボックスの ready 通知を待つ"""
        return self._ready.wait(timeout)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    # ========================================
    # 受信
    # ========================================

    def _on_message(self, message: Dict[str, Any]):
        message_type = message.get('type')

        if message_type is None:
            self.rpc.handle_response(message)
        elif message_type == 'ready':
            # サンドボックスの再起動時はロード状態をやり直す
            with self._loaded_lock:
                self._loaded.clear()
            self._ready.set()
            self.log("Sandbox ready", "debug")
        elif message_type == 'log':
            self.log(str(message.get('result', '')), "debug")
        elif message_type in self._handlers:
            self._executor.submit(self._handle_request, message)
        else:
            self.log(f"Unknown message type: {message_type}", "warning")

    def _handle_request(self, message: Dict[str, Any]):
        request_id = message.get('requestId')
        handler = self._handlers[message['type']]
        try:
            response = {'requestId': request_id, 'result': handler(message)}
        except Exception as e:
            self.log(f"{message['type']} の処理に失敗しました: {e}", "error")
            self.log(f"詳細: {traceback.format_exc()}", "debug")
            response = {'requestId': request_id, 'error': str(e), 'errorType': error_type_name(e)}
        self.endpoint.post(response)

    def _handle_fetch_proxy(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return self.proxy.fetch(str(message.get('url', '')), message.get('options') or {})

    def _handle_state_store(self, message: Dict[str, Any]) -> bool:
        key = extension_state_key(message.get('extensionId', ''), message.get('key', ''))
        self.store.set_item(key, json.dumps(message.get('value'), ensure_ascii=False))
        return True

    def _handle_state_retrieve(self, message: Dict[str, Any]) -> Any:
        key = extension_state_key(message.get('extensionId', ''), message.get('key', ''))
        raw = self.store.get_item(key)
        return json.loads(raw) if raw else None

    # ========================================
    # サンドボックスへの要求
    # ========================================

    def is_loaded(self, extension_id: str) -> bool:
        with self._loaded_lock:
            return extension_id in self._loaded

    def load_extension(self, extension_id: str, source_script: str) -> bool:
        """
        拡張をロード

        Returns:
            成功時 True（失敗はログに記録し False）
        """
        if not self.wait_until_ready():
            self.log("サンドボックスの準備ができていません", "error")
            return False
        try:
            self.rpc.call('loadExtension', {
                'extensionId': extension_id,
                'sourceScript': source_script,
            }, timeout=self.rpc_timeout)
        except BridgeError as e:
            self.log(f"Failed to load extension {extension_id}: {e}", "error")
            with self._loaded_lock:
                self._loaded.discard(extension_id)
            return False

        with self._loaded_lock:
            self._loaded.add(extension_id)
        return True

    def run_extension_method(self, extension_id: str, method: str,
                             args: Optional[List[Any]] = None,
                             timeout: Optional[float] = None) -> Any:
        """
        拡張のメソッドを実行（失敗時は対応する例外を送出）

        画像取得・DRM復号は network_timeout、それ以外は rpc_timeout で待つ。
        """
        if timeout is None:
            timeout = self.network_timeout if _is_network_method(method) else self.rpc_timeout
        return self.rpc.call('runMethod', {
            'extensionId': extension_id,
            'method': method,
            'args': list(args or []),
        }, timeout=timeout)
