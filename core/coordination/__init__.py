# -*- coding: utf-8 -*-
"""
Coordination Layer - 調整層

責任:
- ダウンロードキューの調整
- キュー変更の通知
- バックグラウンドでのダウンロード継続

設計原則:
- GUI非依存
- 単一責任
- スレッドセーフ
"""

from .event_bus import EventBus, Event, EventType
from .download_orchestrator import DownloadOrchestrator, parse_drm_url, decode_data_uri
from .background_task import BackgroundDownloadTask, ThreadBackgroundExecutor, build_notification

__all__ = [
    'EventBus',
    'Event',
    'EventType',
    'DownloadOrchestrator',
    'parse_drm_url',
    'decode_data_uri',
    'BackgroundDownloadTask',
    'ThreadBackgroundExecutor',
    'build_notification',
]
