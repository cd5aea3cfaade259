# -*- coding: utf-8 -*-
"""
ダウンロードジョブ - キューに並ぶチャプター単位の状態
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(Enum):
    """ジョブ状態"""
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MangaRef:
    """ダウンロード対象のマンガ（オーケストレーターへの入力）"""
    id: str
    title: str = ""
    cover_image: str = ""
    source: str = ""


@dataclass
class ChapterRef:
    """ダウンロード対象のチャプター"""
    id: str
    number: float = 0
    title: str = ""


@dataclass
class DownloadJob:
    """
    表示用キューに並ぶダウンロードジョブ

    完了・失敗時にキューから取り除かれる。
    """
    chapter_id: str
    manga_id: str
    manga_title: str = ""
    manga_cover: str = ""
    chapter_title: str = ""
    chapter_number: float = 0
    source_id: str = ""
    total: int = 0
    progress: int = 0
    status: JobStatus = JobStatus.QUEUED

    @classmethod
    def create(cls, manga: MangaRef, chapter: ChapterRef) -> 'DownloadJob':
        return cls(
            chapter_id=chapter.id,
            manga_id=manga.id,
            manga_title=manga.title,
            manga_cover=manga.cover_image,
            chapter_title=chapter.title or f"Chapter {chapter.number}",
            chapter_number=chapter.number,
            source_id=manga.source,
        )

    def mark_downloading(self):
        self.status = JobStatus.DOWNLOADING

    def mark_paused(self):
        self.status = JobStatus.PAUSED

    def mark_queued(self):
        self.status = JobStatus.QUEUED

    def mark_failed(self):
        self.status = JobStatus.FAILED

    def mark_completed(self):
        self.status = JobStatus.COMPLETED
        self.progress = self.total

    def get_progress_ratio(self) -> float:
        """進捗率（0.0〜1.0）"""
        return self.progress / self.total if self.total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換"""
        return {
            'chapterId': self.chapter_id,
            'mangaId': self.manga_id,
            'mangaTitle': self.manga_title,
            'mangaCover': self.manga_cover,
            'chapterTitle': self.chapter_title,
            'sourceId': self.source_id,
            'total': self.total,
            'progress': self.progress,
            'status': self.status.value,
        }


@dataclass
class DownloadedChapterRecord:
    """
    ダウンロード完了したチャプターのメタデータ

    永続化キーは既存データとの互換のため camelCase を使う。
    """
    manga_id: str
    chapter_id: str
    chapter_number: float = 0
    chapter_title: str = ""
    manga_title: str = ""
    manga_cover: str = ""
    source_id: str = ""
    pages: List[str] = field(default_factory=list)
    downloaded_at: str = ""
    size: int = 0

    def __post_init__(self):
        if not self.downloaded_at:
            self.downloaded_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mangaId': self.manga_id,
            'chapterId': self.chapter_id,
            'chapterNumber': self.chapter_number,
            'chapterTitle': self.chapter_title,
            'mangaTitle': self.manga_title,
            'mangaCover': self.manga_cover,
            'sourceId': self.source_id,
            'pages': list(self.pages),
            'downloadedAt': self.downloaded_at,
            'size': self.size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DownloadedChapterRecord':
        """辞書から復元（欠けているキーはデフォルト値）"""
        return cls(
            manga_id=str(data.get('mangaId', '')),
            chapter_id=str(data.get('chapterId', '')),
            chapter_number=data.get('chapterNumber', 0),
            chapter_title=data.get('chapterTitle', ''),
            manga_title=data.get('mangaTitle', ''),
            manga_cover=data.get('mangaCover', ''),
            source_id=data.get('sourceId', ''),
            pages=list(data.get('pages') or []),
            downloaded_at=data.get('downloadedAt', ''),
            size=int(data.get('size') or 0),
        )


def find_record(records: List[DownloadedChapterRecord], chapter_id: str) -> Optional[DownloadedChapterRecord]:
    for record in records:
        if record.chapter_id == chapter_id:
            return record
    return None
