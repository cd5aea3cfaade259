# -*- coding: utf-8 -*-
"""
ダウンロードオーケストレーター - チャプターダウンロード全体の調整役

責任:
1. ダウンロードキュー（待機・実行中・表示用）の管理
2. 回線種別に応じた並列数での実行
3. 一時停止・再開・キャンセル
4. 完了したチャプターのメタデータ永続化

設計原則:
- 単一責任: キューとジョブの調整のみ（ページURLの解決は IChapterPageResolver に委譲）
- GUI非依存: EventBus経由で通知
- スレッドセーフ: キューの状態は1つのロックで保護し、I/Oはロック外で行う

使用例:
    orchestrator = DownloadOrchestrator(source_manager, LocalFileSystem(), store,
                                        PsutilNetworkMonitor(), downloads_dir)
    orchestrator.download_chapter(MangaRef('m1', 'Title', source='pixiv'), ChapterRef('c1', 1))
"""

import base64
import binascii
import json
import os
import threading
import time
import traceback
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Any, Callable, Deque, List, Optional, Set, Tuple

from config.constants import (
    DOWNLOADS_METADATA_KEY,
    DRM_SCHEME,
    PAGE_FILE_EXTENSION,
    PARALLEL_CHAPTERS_CELLULAR,
    PARALLEL_CHAPTERS_WIFI,
    SCHEDULER_POLL_INTERVAL,
)
from core.coordination.event_bus import Event, EventBus, EventType
from core.errors.error_types import DownloadPageError
from core.interfaces import IChapterPageResolver, IFileSystem, IKeyValueStore, INetworkMonitor
from core.models.download_job import (
    ChapterRef,
    DownloadedChapterRecord,
    DownloadJob,
    JobStatus,
    MangaRef,
    find_record,
)
from core.network.network_monitor import is_unmetered
from core.utils.contracts import ensure, require

PendingItem = Tuple[MangaRef, ChapterRef]


def parse_drm_url(url: str) -> Optional[Tuple[str, str]]:
    """
    drm://<extensionId>/<url> を分解

    Returns:
        (extension_id, actual_url)、DRMタグでなければ None
    """
    if not url.startswith(DRM_SCHEME):
        return None
    rest = url[len(DRM_SCHEME):]
    slash = rest.find('/')
    if slash == -1:
        return None
    return rest[:slash], rest[slash + 1:]


def decode_data_uri(data_uri: str) -> bytes:
    """data:image/...;base64,XXXX（またはプレフィックス無しのbase64）をバイト列に変換"""
    payload = data_uri.split(',', 1)[1] if ',' in data_uri else data_uri
    return base64.b64decode(payload)


class DownloadOrchestrator:
    """
    チャプター単位のダウンロードスケジューラ

    状態遷移: queued → downloading → completed | failed
              queued / downloading → paused → queued（再開時）
    """

    def __init__(self, resolver: IChapterPageResolver,
                 file_system: IFileSystem,
                 store: IKeyValueStore,
                 network_monitor: INetworkMonitor,
                 downloads_dir: str,
                 event_bus: Optional[EventBus] = None,
                 logger: Callable[[str, str], None] = None,
                 parallel_wifi: int = PARALLEL_CHAPTERS_WIFI,
                 parallel_cellular: int = PARALLEL_CHAPTERS_CELLULAR,
                 poll_interval: float = SCHEDULER_POLL_INTERVAL):
        """
        Args:
            resolver: ページURLの解決と画像取得
            file_system: ページの保存先
            store: ダウンロード済みメタデータの保存先
            network_monitor: 回線種別の取得
            downloads_dir: ダウンロードのルートディレクトリ
            event_bus: キュー変更の通知先（省略時は内部で作成）
            logger: ログ出力関数（省略可）
            parallel_wifi: wifi（有線）時の同時チャプター数
            parallel_cellular: それ以外の同時チャプター数
            poll_interval: 空きスロット待ちの間隔（秒）
        """
        self.resolver = resolver
        self.file_system = file_system
        self.store = store
        self.network_monitor = network_monitor
        self.downloads_dir = downloads_dir
        self.event_bus = event_bus or EventBus(logger=logger)
        self.logger = logger
        self.parallel_wifi = parallel_wifi
        self.parallel_cellular = parallel_cellular
        self.poll_interval = poll_interval

        # キューの状態（全て self._lock で保護）
        self._lock = threading.Lock()
        self._queue: List[DownloadJob] = []
        self._pending: Deque[PendingItem] = deque()
        self._active: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._paused = False
        self._processing = False

        self._metadata_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max(parallel_wifi, parallel_cellular, 1),
            thread_name_prefix="Download-"
        )

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[Download] {message}", level)

    def shutdown(self, wait_workers: bool = True):
        """ワーカーを停止"""
        self._executor.shutdown(wait=wait_workers)

    # ========================================
    # 並列数
    # ========================================

    def max_parallel(self) -> int:
        """wifi・有線なら parallel_wifi、それ以外（判定失敗を含む）は parallel_cellular"""
        try:
            network_type = self.network_monitor.get_network_type()
        except Exception as e:
            self.log(f"ネットワーク種別の取得に失敗しました: {e}", "warning")
            return self.parallel_cellular
        return self.parallel_wifi if is_unmetered(network_type) else self.parallel_cellular

    # ========================================
    # キュー操作
    # ========================================

    def download_chapter(self, manga: MangaRef, chapter: ChapterRef) -> bool:
        """
        チャプターをキューに追加

        Returns:
            追加した場合 True（実行中・待機中・ソース未指定の場合は False）
        """
        require(bool(chapter.id), "chapter id must not be empty")

        with self._lock:
            if chapter.id in self._active:
                return False
            if any(item[1].id == chapter.id for item in self._pending):
                return False
            if self._find_job(chapter.id) is not None:
                return False
            if not manga.source:
                self.log("Cannot download chapter: no source ID", "error")
                return False

            self._cancelled.discard(chapter.id)
            self._pending.append((manga, chapter))
            job = DownloadJob.create(manga, chapter)
            if self._paused:
                job.mark_paused()
            self._queue.append(job)

        self._notify()
        self.process_queue()
        return True

    def cancel_download(self, chapter_id: str):
        """
        ダウンロードをキャンセル

        待機中のものはキューから取り除き、実行中のものは次のページ境界で中断して
        途中までのディレクトリを削除する。
        """
        with self._lock:
            if chapter_id in self._active:
                self._cancelled.add(chapter_id)
            self._pending = deque(item for item in self._pending if item[1].id != chapter_id)
            self._queue = [job for job in self._queue if job.chapter_id != chapter_id]
        self._notify()

    def pause_all(self):
        with self._lock:
            self._paused = True
            for job in self._queue:
                if job.status in (JobStatus.QUEUED, JobStatus.DOWNLOADING):
                    job.mark_paused()
        self._notify()
        self.event_bus.publish(Event(type=EventType.DOWNLOADS_PAUSED, data={}, source="DownloadOrchestrator"))

    def resume_all(self):
        with self._lock:
            self._paused = False
            for job in self._queue:
                if job.status == JobStatus.PAUSED:
                    job.mark_queued()
        self._notify()
        self.event_bus.publish(Event(type=EventType.DOWNLOADS_RESUMED, data={}, source="DownloadOrchestrator"))
        self.process_queue()

    # ========================================
    # スケジューラ
    # ========================================

    def process_queue(self):
        """スケジューラスレッドを起動（既に動いている・一時停止中なら何もしない）"""
        with self._lock:
            if self._processing or self._paused:
                return
            self._processing = True

        threading.Thread(
            target=self._scheduler_loop,
            daemon=True,
            name="Download-Scheduler"
        ).start()

    def _take_batch(self, slots: int) -> List[PendingItem]:
        """待機キューから最大 slots 件を取り出し実行中にする（ロック取得済みで呼ぶ）"""
        batch = []
        while self._pending and len(batch) < slots:
            item = self._pending.popleft()
            self._active.add(item[1].id)
            batch.append(item)
        return batch

    def _scheduler_loop(self):
        try:
            while True:
                max_parallel = self.max_parallel()
                with self._lock:
                    if self._paused or not self._pending:
                        break
                    slots = max_parallel - len(self._active)
                    batch = self._take_batch(slots) if slots > 0 else []

                if not batch:
                    time.sleep(self.poll_interval)
                    continue

                futures = [self._executor.submit(self._execute_download, manga, chapter)
                           for manga, chapter in batch]
                wait(futures)
        except Exception as e:
            self.log(f"スケジューラでエラーが発生しました: {e}", "error")
            self.log(f"詳細: {traceback.format_exc()}", "debug")
        finally:
            with self._lock:
                self._processing = False
                restart = bool(self._pending) and not self._paused
            if restart:
                self.process_queue()

    def process_background_downloads(self) -> bool:
        """
        バックグラウンド用：空きスロット分のジョブを起動する（完了は待たない）

        Returns:
            まだ処理すべきジョブが残っている場合 True
        """
        with self._lock:
            if self._paused:
                return False

        max_parallel = self.max_parallel()
        with self._lock:
            slots = max_parallel - len(self._active)
            batch = self._take_batch(slots) if slots > 0 else []
            self.log(f"Background process: active={len(self._active)}, "
                     f"pending={len(self._pending)}, maxParallel={max_parallel}", "debug")

        for manga, chapter in batch:
            self._executor.submit(self._execute_download, manga, chapter)

        with self._lock:
            has_queued = any(job.status in (JobStatus.QUEUED, JobStatus.DOWNLOADING)
                             for job in self._queue)
            return bool(self._active) or bool(self._pending) or has_queued

    # ========================================
    # チャプターのダウンロード
    # ========================================

    def _chapter_dir(self, manga_id: str, chapter_id: str) -> str:
        return os.path.join(self.downloads_dir, manga_id, chapter_id)

    def _execute_download(self, manga: MangaRef, chapter: ChapterRef):
        chapter_id = chapter.id
        requeued = False
        job: Optional[DownloadJob] = None
        try:
            with self._lock:
                if chapter_id in self._cancelled:
                    self._cancelled.discard(chapter_id)
                    self.log("Download was cancelled before starting", "debug")
                    return
                job = self._find_job(chapter_id)
                if job is None:
                    job = DownloadJob.create(manga, chapter)
                    self._queue.append(job)
                job.mark_downloading()
            self._notify()
            self.event_bus.publish(Event(type=EventType.CHAPTER_STARTED,
                                         data={'chapter_id': chapter_id},
                                         source="DownloadOrchestrator"))

            self.log(f"Fetching pages for {chapter_id} from source {manga.source}")
            page_urls = self.resolver.get_chapter_pages(manga.source, manga.id, chapter_id)
            if not page_urls:
                raise DownloadPageError("No pages found for chapter", chapter_id)

            with self._lock:
                job.total = len(page_urls)
            self._notify()

            chapter_dir = self._chapter_dir(manga.id, chapter_id)
            self.file_system.make_dirs(chapter_dir)

            local_pages: List[str] = []
            size = 0
            for index, page_url in enumerate(page_urls):
                interrupted = self._check_interrupt(manga, chapter, job, chapter_dir)
                if interrupted is not None:
                    requeued = interrupted == "paused"
                    return

                target = os.path.join(chapter_dir, f"{index}{PAGE_FILE_EXTENSION}")
                try:
                    if not self.file_system.exists(target):
                        self.file_system.write_bytes(
                            target, self._fetch_page(manga.source, page_url, chapter_id, index))
                    local_pages.append(self.file_system.to_uri(target))
                    size += self.file_system.file_size(target)
                except (DownloadPageError, OSError) as e:
                    self.log(f"Error downloading page {index + 1}: {e}", "warning")

                with self._lock:
                    job.progress = index + 1
                self._notify()
                self.event_bus.publish(Event(
                    type=EventType.CHAPTER_PROGRESS,
                    data={'chapter_id': chapter_id, 'progress': index + 1, 'total': len(page_urls)},
                    source="DownloadOrchestrator"
                ))

            # 最終ページの取得中にキャンセルされた場合は記録しない
            if self._drop_if_cancelled(chapter_id, chapter_dir):
                return

            self._save_record(DownloadedChapterRecord(
                manga_id=manga.id,
                chapter_id=chapter_id,
                chapter_number=chapter.number,
                chapter_title=chapter.title,
                manga_title=manga.title,
                manga_cover=manga.cover_image,
                source_id=manga.source,
                pages=local_pages,
                size=size,
            ))
            self._finish(job, JobStatus.COMPLETED)
            self.log(f"チャプターのダウンロードが完了しました: {chapter_id} ({len(local_pages)}/{len(page_urls)})")

        except Exception as e:
            self.log(f"Download failed: {chapter_id} - {e}", "error")
            self.log(f"詳細: {traceback.format_exc()}", "debug")
            if job is not None:
                self._finish(job, JobStatus.FAILED)
        finally:
            with self._lock:
                self._cancelled.discard(chapter_id)
                if not requeued:
                    self._active.discard(chapter_id)

    def _check_interrupt(self, manga: MangaRef, chapter: ChapterRef,
                         job: DownloadJob, chapter_dir: str) -> Optional[str]:
        """
        ページ境界でキャンセル・一時停止を確認

        Returns:
            "cancelled" / "paused"、続行する場合は None
        """
        if self._drop_if_cancelled(chapter.id, chapter_dir):
            return "cancelled"
        with self._lock:
            if self._paused:
                # 待機キューの先頭に戻す（書き込み済みのページは再開時に再利用する）
                self._pending.appendleft((manga, chapter))
                self._active.discard(chapter.id)
                job.mark_paused()
                return "paused"
        return None

    def _drop_if_cancelled(self, chapter_id: str, chapter_dir: str) -> bool:
        """キャンセル済みなら途中までのディレクトリを削除して True"""
        with self._lock:
            if chapter_id not in self._cancelled:
                return False
            self._cancelled.discard(chapter_id)

        self.file_system.delete(chapter_dir)
        self.log("Download cancelled during progress", "debug")
        self.event_bus.publish(Event(type=EventType.CHAPTER_CANCELLED,
                                     data={'chapter_id': chapter_id},
                                     source="DownloadOrchestrator"))
        return True

    def _fetch_page(self, source_id: str, page_url: str, chapter_id: str, index: int) -> bytes:
        """1ページ分の画像を取得（DRMタグ付きURLは拡張で復号）"""
        try:
            drm = parse_drm_url(page_url)
            if drm is not None:
                extension_id, actual_url = drm
                self.log(f"Decrypting DRM page {index + 1}", "debug")
                data_uri = self.resolver.decrypt_drm_image(extension_id, actual_url)
            else:
                data_uri = self.resolver.fetch_image(source_id, page_url)
            if not data_uri:
                raise DownloadPageError(f"Failed to fetch page {index + 1}", chapter_id, index, page_url)
            return decode_data_uri(data_uri)
        except DownloadPageError:
            raise
        except (binascii.Error, ValueError) as e:
            raise DownloadPageError(f"Invalid image data: {e}", chapter_id, index, page_url) from e
        except Exception as e:
            raise DownloadPageError(str(e), chapter_id, index, page_url) from e

    def _finish(self, job: DownloadJob, status: JobStatus):
        with self._lock:
            if status == JobStatus.COMPLETED:
                job.mark_completed()
            else:
                job.mark_failed()
            self._queue = [j for j in self._queue if j.chapter_id != job.chapter_id]
        self._notify()
        event_type = EventType.CHAPTER_COMPLETED if status == JobStatus.COMPLETED else EventType.CHAPTER_FAILED
        self.event_bus.publish(Event(type=event_type, data={'chapter_id': job.chapter_id},
                                     source="DownloadOrchestrator"))

    # ========================================
    # メタデータ
    # ========================================

    def get_downloaded_chapters(self) -> List[DownloadedChapterRecord]:
        raw = self.store.get_item(DOWNLOADS_METADATA_KEY)
        if not raw:
            return []
        try:
            return [DownloadedChapterRecord.from_dict(item) for item in json.loads(raw)]
        except (ValueError, TypeError, AttributeError) as e:
            self.log(f"Failed to load downloaded chapters: {e}", "error")
            return []

    def _save_downloaded_chapters(self, records: List[DownloadedChapterRecord]):
        self.store.set_item(DOWNLOADS_METADATA_KEY,
                            json.dumps([record.to_dict() for record in records], ensure_ascii=False))

    def _save_record(self, record: DownloadedChapterRecord):
        with self._metadata_lock:
            records = [r for r in self.get_downloaded_chapters() if r.chapter_id != record.chapter_id]
            records.append(record)
            self._save_downloaded_chapters(records)
        ensure(self.is_chapter_downloaded(record.chapter_id), "completed chapter must be recorded")

    def delete_chapter(self, chapter_id: str) -> bool:
        """ダウンロード済みチャプターのディレクトリとメタデータを削除"""
        with self._metadata_lock:
            records = self.get_downloaded_chapters()
            record = find_record(records, chapter_id)
            if record is None:
                return False
            self.file_system.delete(self._chapter_dir(record.manga_id, record.chapter_id))
            self._save_downloaded_chapters([r for r in records if r.chapter_id != chapter_id])
        self.event_bus.publish(Event(type=EventType.CHAPTER_DELETED, data={'chapter_id': chapter_id},
                                     source="DownloadOrchestrator"))
        return True

    # ========================================
    # 問い合わせ
    # ========================================

    def _find_job(self, chapter_id: str) -> Optional[DownloadJob]:
        for job in self._queue:
            if job.chapter_id == chapter_id:
                return job
        return None

    def get_queue(self) -> List[DownloadJob]:
        """表示用キューのスナップショット"""
        with self._lock:
            return [replace(job) for job in self._queue]

    def is_all_paused(self) -> bool:
        with self._lock:
            return self._paused

    def is_chapter_downloaded(self, chapter_id: str) -> bool:
        return find_record(self.get_downloaded_chapters(), chapter_id) is not None

    def is_downloading(self, chapter_id: str) -> bool:
        with self._lock:
            return chapter_id in self._active

    def is_queued(self, chapter_id: str) -> bool:
        with self._lock:
            return any(item[1].id == chapter_id for item in self._pending)

    def get_download_progress(self, chapter_id: str) -> Optional[float]:
        """進捗率（0.0〜1.0）、キューに無ければ None"""
        with self._lock:
            job = self._find_job(chapter_id)
            return job.get_progress_ratio() if job is not None else None

    def get_downloads_size(self) -> int:
        if not self.file_system.exists(self.downloads_dir):
            return 0
        return self.file_system.directory_size(self.downloads_dir)

    def subscribe(self, listener: Callable[[List[DownloadJob]], Any]) -> Callable[[], None]:
        """
        キュー変更の購読

        Returns:
            購読解除関数
        """
        def on_queue_changed(event: Event):
            listener(event.data['queue'])

        self.event_bus.subscribe(EventType.QUEUE_CHANGED, on_queue_changed)
        return lambda: self.event_bus.unsubscribe(EventType.QUEUE_CHANGED, on_queue_changed)

    def _notify(self):
        with self._lock:
            snapshot = [replace(job) for job in self._queue]
        self.event_bus.publish(Event(type=EventType.QUEUE_CHANGED, data={'queue': snapshot},
                                     source="DownloadOrchestrator"))
