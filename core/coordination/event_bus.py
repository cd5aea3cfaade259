# -*- coding: utf-8 -*-
"""
ダウンロードキューのイベント配信

オーケストレーターが発行するキュー変更・チャプター進捗を購読者へ届ける。
start() 後は専用スレッドで配信するため、ダウンロードスレッドは購読者の処理を待たない。
start() 前（テストや単発のCLI処理）は発行したスレッドでそのまま配信する。
"""

import queue
import threading
import time
import traceback
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class EventType(Enum):
    QUEUE_CHANGED = "queue_changed"

    CHAPTER_STARTED = "chapter_started"
    CHAPTER_PROGRESS = "chapter_progress"
    CHAPTER_COMPLETED = "chapter_completed"
    CHAPTER_FAILED = "chapter_failed"
    CHAPTER_CANCELLED = "chapter_cancelled"
    CHAPTER_DELETED = "chapter_deleted"

    DOWNLOADS_PAUSED = "downloads_paused"
    DOWNLOADS_RESUMED = "downloads_resumed"


@dataclass
class Event:
    """
    type: イベント種別
    data: chapter_id / progress / total / queue など種別ごとの内容
    """
    type: EventType
    data: Dict[str, Any]
    source: str = "unknown"
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[Event], None]

# stop() でワーカーを起こすための番兵
_STOP = object()


class EventBus:
    """キュー・チャプターイベントの購読と配信"""

    def __init__(self, logger: Callable[[str, str], None] = None):
        self.logger = logger
        self._listeners: Dict[EventType, List[Listener]] = defaultdict(list)
        self._listeners_lock = threading.Lock()
        self._pending: "queue.Queue[Any]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    def log(self, message: str, level: str = "debug"):
        if self.logger:
            self.logger(f"[EventBus] {message}", level)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self):
        if self.is_running:
            return
        self._worker = threading.Thread(target=self._deliver_loop, daemon=True, name="EventBus-Worker")
        self._worker.start()
        self.log("配信スレッドを開始しました")

    def stop(self, timeout: float = 5.0):
        """配信スレッドを止める（積まれているイベントは配信してから終了）"""
        worker = self._worker
        if worker is None:
            return
        self._pending.put(_STOP)
        worker.join(timeout=timeout)
        self._worker = None
        self.log("配信スレッドを停止しました")

    def subscribe(self, event_type: EventType, listener: Listener):
        with self._listeners_lock:
            if listener not in self._listeners[event_type]:
                self._listeners[event_type].append(listener)

    def unsubscribe(self, event_type: EventType, listener: Listener):
        with self._listeners_lock:
            if listener in self._listeners[event_type]:
                self._listeners[event_type].remove(listener)

    def publish(self, event: Event):
        if self.is_running:
            self._pending.put(event)
        else:
            self._deliver(event)

    def _deliver_loop(self):
        while True:
            event = self._pending.get()
            if event is _STOP:
                return
            self._deliver(event)

    def _deliver(self, event: Event):
        with self._listeners_lock:
            listeners = list(self._listeners[event.type])

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                # 購読者の失敗は他の購読者・発行元に波及させない
                self.log(f"購読者でエラー ({event.type.value}): {e}", "error")
                self.log(f"詳細: {traceback.format_exc()}", "debug")
