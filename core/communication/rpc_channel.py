# -*- coding: utf-8 -*-
"""
RPCチャネル - 要求/応答の対応付け

責任:
1. 要求IDの払い出し（単調増加）
2. 保留中リクエストの管理と、応答またはタイムアウトによる一度だけの解決
3. リモートエラーの例外型への復元

ホスト側・サンドボックス側の両方で同じ実装を使う。
リモート側の処理はキャンセルしない。タイムアウト後に届いた応答は破棄する。
"""

import itertools
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from config.constants import RPC_TIMEOUT
from core.errors.error_types import RPCTimeoutError, error_from_wire


@dataclass
class PendingRequest:
    """応答待ちのリクエスト"""
    request_id: int
    request_type: str
    future: Future = field(default_factory=Future)
    timer: Optional[threading.Timer] = None


class RpcChannel:
    """
    相関付きメッセージパッシング

    使用例:
        channel = RpcChannel(endpoint.post)
        future = channel.send('runMethod', {'extensionId': 'pixiv', 'method': 'getChapters', 'args': ['1']})
        chapters = future.result()

        # 受信側で応答を渡す
        channel.handle_response({'requestId': 1, 'result': [...]})
    """

    def __init__(self, post: Callable[[Dict[str, Any]], None],
                 default_timeout: float = RPC_TIMEOUT,
                 logger: Callable[[str, str], None] = None,
                 name: str = "RpcChannel"):
        """
        Args:
            post: メッセージ送信関数（トランスポートの post）
            default_timeout: タイムアウト秒数の既定値
            logger: ログ出力関数（省略可）
            name: ログ用の名前
        """
        self._post = post
        self.default_timeout = default_timeout
        self.logger = logger
        self.name = name

        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._lock = threading.Lock()
        self._closed = False

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[{self.name}] {message}", level)

    def send(self, request_type: str, payload: Optional[Dict[str, Any]] = None,
             timeout: Optional[float] = None) -> Future:
        """
        リクエストを送信

        Args:
            request_type: メッセージ種別（loadExtension / runMethod / fetchProxy など）
            payload: 追加フィールド
            timeout: タイムアウト秒数（省略時は default_timeout）

        Returns:
            応答で解決される Future
        """
        timeout = self.default_timeout if timeout is None else timeout

        with self._lock:
            request_id = next(self._ids)
            pending = PendingRequest(request_id=request_id, request_type=request_type)
            if self._closed:
                pending.future.set_exception(RPCTimeoutError(
                    "Channel closed", request_id=request_id, request_type=request_type))
                return pending.future
            timer = threading.Timer(timeout, self._on_timeout, args=(request_id,))
            timer.daemon = True
            pending.timer = timer
            self._pending[request_id] = pending

        message = dict(payload or {})
        message['type'] = request_type
        message['requestId'] = request_id

        timer.start()
        try:
            self._post(message)
        except Exception as e:
            entry = self._take(request_id)
            if entry is not None:
                entry.future.set_exception(e)
        return pending.future

    def call(self, request_type: str, payload: Optional[Dict[str, Any]] = None,
             timeout: Optional[float] = None) -> Any:
        """send() の同期版（応答まで待機し、結果を返すか例外を送出）"""
        return self.send(request_type, payload, timeout).result()

    def handle_response(self, message: Dict[str, Any]) -> bool:
        """
        応答メッセージを処理

        Returns:
            対応する保留中リクエストがあった場合 True
        """
        request_id = message.get('requestId')
        entry = self._take(request_id)
        if entry is None:
            self.log(f"対応するリクエストが無い応答を破棄: requestId={request_id}", "debug")
            return False

        if message.get('error') is not None:
            entry.future.set_exception(
                error_from_wire(str(message['error']), message.get('errorType')))
        else:
            entry.future.set_result(message.get('result'))
        return True

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self, reason: str = "Channel closed"):
        """保留中のリクエストを全て失敗させ、以降の送信を拒否"""
        with self._lock:
            self._closed = True
            entries = list(self._pending.values())
            self._pending.clear()

        for entry in entries:
            if entry.timer:
                entry.timer.cancel()
            entry.future.set_exception(RPCTimeoutError(
                reason, request_id=entry.request_id, request_type=entry.request_type))

    def _take(self, request_id) -> Optional[PendingRequest]:
        """保留中エントリを取り出す（解決はここを通った一度だけ）"""
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer:
            entry.timer.cancel()
        return entry

    def _on_timeout(self, request_id: int):
        entry = self._take(request_id)
        if entry is None:
            return
        self.log(f"タイムアウト: {entry.request_type} (requestId={request_id})", "warning")
        entry.future.set_exception(RPCTimeoutError(
            f"Request timeout: {entry.request_type}",
            request_id=request_id,
            request_type=entry.request_type,
        ))
