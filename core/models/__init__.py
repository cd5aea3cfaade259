# -*- coding: utf-8 -*-
"""
Core Models - データモデル定義
"""

from core.models.download_job import (
    JobStatus,
    MangaRef,
    ChapterRef,
    DownloadJob,
    DownloadedChapterRecord,
)
from core.models.extension import InstalledExtension

__all__ = [
    'JobStatus',
    'MangaRef',
    'ChapterRef',
    'DownloadJob',
    'DownloadedChapterRecord',
    'InstalledExtension',
]
