# -*- coding: utf-8 -*-
"""
バックグラウンドダウンロード

キューにジョブが残っている間、一定間隔で
DownloadOrchestrator.process_background_downloads() を呼び出し、
進捗を通知として表示する。キューが空になると自動的に停止する。
"""

import threading
import time
import traceback
from dataclasses import dataclass
from typing import Callable, List, Optional

from config.constants import BACKGROUND_POLL_INTERVAL
from core.interfaces import IBackgroundExecutor
from core.models.download_job import DownloadJob, JobStatus


@dataclass
class Notification:
    """通知の内容（progress が None の場合は進捗不定）"""
    title: str
    description: str
    progress: Optional[float] = None


def _job_line(job: DownloadJob) -> str:
    percent = round(job.get_progress_ratio() * 100)
    return f"{job.chapter_title}: {job.progress}/{job.total} ({percent}%)"


def build_notification(queue: List[DownloadJob]) -> Optional[Notification]:
    """
    キューの状態から通知の内容を組み立てる

    - 1チャプター実行中: マンガ名と進捗率
    - 複数チャプター実行中: チャプターごとの行（進捗不定）
    - 待機のみ: 待機数

    Returns:
        Notification（実行中・待機中のジョブが無ければ None）
    """
    downloading = [job for job in queue if job.status == JobStatus.DOWNLOADING]
    queued_count = len([job for job in queue if job.status == JobStatus.QUEUED])

    if not downloading and queued_count == 0:
        return None

    if len(downloading) == 1:
        job = downloading[0]
        description = _job_line(job)
        if queued_count > 0:
            description += f"\n+{queued_count} more in queue"
        return Notification(job.manga_title, description, job.get_progress_ratio() * 100)

    if downloading:
        lines = [_job_line(job) for job in downloading]
        if queued_count > 0:
            lines.append(f"+{queued_count} more in queue")
        return Notification(f"Downloading {len(downloading)} chapters...", "\n".join(lines))

    return Notification("Downloading manga...", f"{queued_count} chapters in queue")


class BackgroundDownloadTask:
    """
    バックグラウンドでダウンロードを進めるループ

    使用例:
        task = BackgroundDownloadTask(orchestrator, ThreadBackgroundExecutor(logger=console_log))
        task.start()
    """

    def __init__(self, orchestrator, executor: IBackgroundExecutor,
                 poll_interval: float = BACKGROUND_POLL_INTERVAL,
                 logger: Callable[[str, str], None] = None):
        """
        Args:
            orchestrator: DownloadOrchestrator
            executor: ループを実行するバックグラウンド実行環境
            poll_interval: ループの間隔（秒）
            logger: ログ出力関数（省略可）
        """
        self.orchestrator = orchestrator
        self.executor = executor
        self.poll_interval = poll_interval
        self.logger = logger

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[BackgroundService] {message}", level)

    def start(self):
        if self.executor.is_running():
            self.log("Already running", "debug")
            return
        self.log("Starting background service...")
        self.executor.start(self.run_loop)

    def stop(self):
        if self.executor.is_running():
            self.executor.stop()

    def run_loop(self):
        iteration = 0
        while self.executor.is_running():
            iteration += 1
            try:
                if not self.run_once():
                    self.log("No more downloads, stopping service")
                    self.executor.stop()
                    break
            except Exception as e:
                self.log(f"Error in background task: {e}", "error")
                self.log(f"詳細: {traceback.format_exc()}", "debug")
            time.sleep(self.poll_interval)
        self.log(f"Background task ended after {iteration} iterations", "debug")

    def run_once(self) -> bool:
        """
        1回分の処理

        Returns:
            続行する場合 True（表示するジョブが無いか、オーケストレーターに残りが無ければ False）
        """
        notification = build_notification(self.orchestrator.get_queue())
        if notification is None:
            return False

        self.executor.update_notification(notification.title, notification.description,
                                          notification.progress)
        has_more = self.orchestrator.process_background_downloads()
        self.log(f"processBackgroundDownloads returned: {has_more}", "debug")
        return has_more


class ThreadBackgroundExecutor(IBackgroundExecutor):
    """デーモンスレッドでループを実行するデスクトップ向けの実装"""

    def __init__(self, logger: Callable[[str, str], None] = None,
                 on_notification: Callable[[str, str, Optional[float]], None] = None):
        self.logger = logger
        self.on_notification = on_notification
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self, loop_fn: Callable[[], None]):
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=loop_fn, daemon=True, name="Background-Download")
            self._thread.start()

    def stop(self):
        with self._lock:
            self._running = False
            thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=5)

    def update_notification(self, title: str, description: str, progress: Optional[float] = None):
        if self.on_notification:
            self.on_notification(title, description, progress)
        elif self.logger:
            suffix = f" [{progress:.0f}%]" if progress is not None else ""
            self.logger(f"[Notification] {title}: {description.replace(chr(10), ' / ')}{suffix}", "info")

    def is_running(self) -> bool:
        return self._running
