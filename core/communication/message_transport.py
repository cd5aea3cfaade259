# -*- coding: utf-8 -*-
"""
メッセージトランスポート - ホストとサンドボックスの境界

責任:
1. JSON文字列としてメッセージを送受信
2. 受信メッセージを読み取りスレッドでハンドラに配信

設計原則:
- 境界を越えるのはJSON文字列のみ（オブジェクト参照を共有しない）
- 読み取りスレッドはブロックしない（重い処理はハンドラ側でワーカーに渡す）
"""

import base64
import json
import queue
import threading
import traceback
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple


def _json_default(value: Any) -> Any:
    """json.dumps で直接扱えない値の変換"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, tuple, frozenset)):
        return list(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return str(value)


def encode_message(message: Dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, default=_json_default)


class MessageEndpoint:
    """
    トランスポートの片側

    使用例:
        host, sandbox = create_transport_pair()
        sandbox.set_handler(on_message)
        sandbox.start()
        host.post({'type': 'loadExtension', 'requestId': 1, ...})
    """

    def __init__(self, name: str, inbox: queue.Queue, outbox: queue.Queue,
                 logger: Callable[[str, str], None] = None):
        """
        Args:
            name: エンドポイント名（スレッド名・ログに使用）
            inbox: 受信キュー
            outbox: 送信キュー（相手側の受信キュー）
            logger: ログ出力関数（省略可）
        """
        self.name = name
        self.logger = logger
        self._inbox = inbox
        self._outbox = outbox
        self._handler: Optional[Callable[[Dict[str, Any]], None]] = None

        self._running = False
        self._reader_thread: threading.Thread = None

    def set_handler(self, handler: Callable[[Dict[str, Any]], None]):
        self._handler = handler

    def start(self):
        """読み取りスレッドを開始"""
        if self._running:
            return

        self._running = True
        self._reader_thread = threading.Thread(
            target=self._read_messages,
            daemon=True,
            name=f"{self.name}-Reader"
        )
        self._reader_thread.start()

        if self.logger:
            self.logger(f"[{self.name}] 読み取りスレッドを開始しました", "debug")

    def stop(self):
        """読み取りスレッドを停止"""
        self._running = False
        if self._reader_thread and self._reader_thread.is_alive() \
                and self._reader_thread is not threading.current_thread():
            self._reader_thread.join(timeout=5)

        if self.logger:
            self.logger(f"[{self.name}] 読み取りスレッドを停止しました", "debug")

    @property
    def is_running(self) -> bool:
        return self._running

    def post(self, message: Dict[str, Any]):
        """
        メッセージを送信

        Args:
            message: JSONに変換可能な辞書
        """
        self._outbox.put(encode_message(message))

    def _read_messages(self):
        """受信ループ（読み取りスレッド）"""
        while self._running:
            try:
                raw = self._inbox.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                message = json.loads(raw)
            except (TypeError, ValueError) as e:
                if self.logger:
                    self.logger(f"[{self.name}] メッセージの解析に失敗しました: {e}", "error")
                continue

            if not isinstance(message, dict) or self._handler is None:
                continue

            try:
                self._handler(message)
            except Exception as e:
                if self.logger:
                    self.logger(f"[{self.name}] メッセージ処理エラー: {e}", "error")
                    self.logger(f"詳細: {traceback.format_exc()}", "error")


def create_transport_pair(logger: Callable[[str, str], None] = None) -> Tuple[MessageEndpoint, MessageEndpoint]:
    """
    接続済みのエンドポイントの組を作成

    Returns:
        (ホスト側, サンドボックス側)
    """
    to_sandbox: queue.Queue = queue.Queue()
    to_host: queue.Queue = queue.Queue()
    host = MessageEndpoint("HostTransport", inbox=to_host, outbox=to_sandbox, logger=logger)
    sandbox = MessageEndpoint("SandboxTransport", inbox=to_sandbox, outbox=to_host, logger=logger)
    return host, sandbox
