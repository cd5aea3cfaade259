# -*- coding: utf-8 -*-
"""
インストール済み拡張のデータモデル
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class InstalledExtension:
    """
    インストール済み拡張

    インストール時に登録され、スクリプト本体は必要になった時点で取得・キャッシュする。
    """
    id: str
    name: str = ""
    author: str = ""
    desc: str = ""
    website: str = ""
    version: str = ""
    icon: str = ""
    tags: List[Dict[str, Any]] = field(default_factory=list)
    content_rating: str = ""
    website_base_url: str = ""
    repository_url: str = ""
    repo_base_url: str = ""
    source_script: str = ""

    @property
    def script_url(self) -> str:
        """ソーススクリプトの取得URL"""
        return f"{self.repo_base_url.rstrip('/')}/{self.id}/source.py"

    @property
    def has_script(self) -> bool:
        return bool(self.source_script)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'author': self.author,
            'desc': self.desc,
            'website': self.website,
            'version': self.version,
            'icon': self.icon,
            'tags': list(self.tags),
            'contentRating': self.content_rating,
            'websiteBaseURL': self.website_base_url,
            'repositoryUrl': self.repository_url,
            'repoBaseUrl': self.repo_base_url,
            'sourceScript': self.source_script,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InstalledExtension':
        """辞書から復元（リポジトリの versioning.json 形式にも対応）"""
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', ''),
            author=data.get('author', ''),
            desc=data.get('desc', ''),
            website=data.get('website', ''),
            version=str(data.get('version', '')),
            icon=data.get('icon', ''),
            tags=list(data.get('tags') or []),
            content_rating=data.get('contentRating', ''),
            website_base_url=data.get('websiteBaseURL', ''),
            repository_url=data.get('repositoryUrl', ''),
            repo_base_url=data.get('repoBaseUrl', ''),
            source_script=data.get('sourceScript', ''),
        )
