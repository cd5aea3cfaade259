import base64
import threading
import time
from typing import Dict, List, Optional

import pytest
import requests

from core.interfaces import IChapterPageResolver


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def data_uri(payload: bytes) -> str:
    return 'data:image/jpeg;base64,' + base64.b64encode(payload).decode('ascii')


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, content: Optional[bytes] = None,
                 json_data=None, chunk_delay: float = 0.0):
        self.text = text
        self.status_code = status_code
        self.content = content if content is not None else text.encode('utf-8')
        self.encoding = 'utf-8'
        self.chunk_delay = chunk_delay
        self.closed = False
        self._json = json_data

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            time.sleep(self.chunk_delay)
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeHttpClient:
    """HttpClient と同じ get / request を持つ差し替え用クライアント"""

    def __init__(self, responses: Optional[Dict[str, object]] = None):
        self.responses = responses or {}
        self.calls: List[dict] = []

    def request(self, method, url, raise_for_status=True, **kwargs):
        self.calls.append({'method': method, 'url': url, 'raise_for_status': raise_for_status, **kwargs})
        response = self.responses.get(url)
        if response is None:
            raise requests.exceptions.ConnectionError(f"no route to {url}")
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self.request('GET', url, **kwargs)


class FakeResolver(IChapterPageResolver):
    """ページURLと画像を固定で返すリゾルバ"""

    def __init__(self, pages: Dict[str, List[str]]):
        self.pages = pages
        self.page_calls: List[str] = []
        self.fetch_calls: List[tuple] = []
        self.decrypt_calls: List[tuple] = []
        self.missing = set()
        self.on_fetch = None
        self.pages_gate: Optional[threading.Event] = None
        self.fetch_gate: Optional[threading.Event] = None
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def get_chapter_pages(self, source_id, manga_id, chapter_id):
        with self._lock:
            self.page_calls.append(chapter_id)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.pages_gate is not None:
                self.pages_gate.wait(5)
            return list(self.pages.get(chapter_id, []))
        finally:
            with self._lock:
                self.in_flight -= 1

    def decrypt_drm_image(self, extension_id, url):
        self.decrypt_calls.append((extension_id, url))
        return data_uri(f"drm:{url}".encode('utf-8'))

    def fetch_image(self, extension_id, url):
        self.fetch_calls.append((extension_id, url))
        if self.on_fetch is not None:
            self.on_fetch(url)
        if self.fetch_gate is not None:
            self.fetch_gate.wait(5)
        if url in self.missing:
            return None
        return data_uri(f"img:{url}".encode('utf-8'))


@pytest.fixture
def fake_http():
    return FakeHttpClient()
