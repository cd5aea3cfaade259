# -*- coding: utf-8 -*-
"""
統合HTTPクライアント - プロキシfetch・スクリプト取得・直接画像取得のHTTP通信を統合
⭐スレッドローカルストレージで各スレッドが独立したセッションを持つ⭐
"""

import threading
from typing import Callable, Dict

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config.constants import NETWORK_TIMEOUT, PROXY_USER_AGENT


class HttpClient:
    """
    統合HTTPクライアント
    全てのHTTPリクエストを一元管理

    ⭐重要: スレッドローカルストレージでセッションを管理⭐
    requests.Session()はスレッドセーフではないため、
    各スレッドが独立したセッションを持つことで競合を防ぐ
    """

    def __init__(self, logger: Callable[[str, str], None] = None,
                 default_timeout: float = NETWORK_TIMEOUT,
                 max_retries: int = 3):
        """
        Args:
            logger: ログ出力関数（省略可）
            default_timeout: タイムアウト秒数の既定値
            max_retries: urllib3 レベルのリトライ回数（0 でリトライしない）
        """
        self.logger = logger

        self._thread_local = threading.local()
        self._sessions = []
        self._sessions_lock = threading.Lock()

        self.default_timeout = default_timeout
        self.default_max_retries = max_retries
        self.default_backoff_factor = 1.0
        self.default_headers: Dict[str, str] = {'User-Agent': PROXY_USER_AGENT}

        # リクエスト統計
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
        }
        self._stats_lock = threading.Lock()

    def _get_session(self) -> requests.Session:
        """
        スレッドローカルストレージからセッションを取得
        各スレッドが独自のセッションを持つため、ロック不要

        Returns:
            現在のスレッド用のrequests.Session
        """
        session = getattr(self._thread_local, 'session', None)
        if session is None:
            session = requests.Session()

            # リトライ設定（最終的なレスポンスはステータスごと呼び出し元に返す）
            retry_strategy = Retry(
                total=self.default_max_retries,
                backoff_factor=self.default_backoff_factor,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["HEAD", "GET", "OPTIONS"],
                raise_on_status=False,
            )

            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            session.headers.update(self.default_headers)

            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)

            self.log(f"スレッド{threading.current_thread().name}用の新規セッションを生成しました", "debug")

        return session

    def _count(self, key: str):
        with self._stats_lock:
            self.stats[key] += 1

    def get(self, url: str, **kwargs) -> requests.Response:
        """GETリクエストを実行"""
        return self.request('GET', url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        """POSTリクエストを実行"""
        return self.request('POST', url, **kwargs)

    def request(self, method: str, url: str, raise_for_status: bool = True,
                **kwargs) -> requests.Response:
        """
        HTTPリクエストを実行

        Args:
            method: HTTPメソッド
            url: リクエストURL
            raise_for_status: 4xx/5xx を例外にするか（プロキシはステータスをそのまま返す）
            **kwargs: session.request に渡す追加引数

        Returns:
            レスポンスオブジェクト
        """
        self._count('total_requests')
        kwargs.setdefault('timeout', self.default_timeout)

        try:
            session = self._get_session()
            self.log(f"{method.upper()} {url[:80]}", "debug")
            response = session.request(method.upper(), url, **kwargs)
            self.log(f"{method.upper()}完了: Status={response.status_code}", "debug")

            if raise_for_status:
                response.raise_for_status()

            self._count('successful_requests')
            return response

        except requests.exceptions.RequestException as e:
            self._count('failed_requests')
            self.log(f"HTTPリクエストエラー: {url} - {e}", "error")
            raise

    def get_stats(self) -> Dict[str, int]:
        """統計情報を取得"""
        with self._stats_lock:
            return self.stats.copy()

    def log(self, message: str, level: str = "info"):
        """ログ出力"""
        if self.logger:
            self.logger(f"[HttpClient] {message}", level)

    def close(self):
        """全スレッドのセッションをクローズ"""
        with self._sessions_lock:
            sessions = list(self._sessions)
            self._sessions.clear()
        for session in sessions:
            session.close()
        self._thread_local = threading.local()
