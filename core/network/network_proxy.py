# -*- coding: utf-8 -*-
"""
ネットワークプロキシ - サンドボックスからのfetch要求を実行するホスト側アダプタ

拡張スクリプトはネットワークに直接触れず、全てのI/Oが fetchProxy メッセージとして
ここを通る。失敗は例外にせずステータス500の構造化結果として返す。
"""

import base64
import json
import time
from typing import Any, Callable, Dict, Optional

import requests

from config.constants import (
    DEFAULT_PROXY_HEADERS,
    DRM_QUERY_MARKER,
    IMAGE_URL_PATTERN,
    NETWORK_TIMEOUT,
    PROXY_CHUNK_SIZE,
)
from core.errors.error_types import NetworkProxyError
from core.network.http_client import HttpClient


def is_binary_request(url: str, options: Optional[Dict[str, Any]] = None) -> bool:
    """バイナリとして扱うリクエストか判定（DRM印・画像拡張子・arraybuffer指定）"""
    options = options or {}
    return (
        DRM_QUERY_MARKER in url
        or IMAGE_URL_PATTERN.search(url) is not None
        or options.get('responseType') == 'arraybuffer'
    )


def merge_headers(headers: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """既定ヘッダーに呼び出し元のヘッダーを重ねる（呼び出し元が優先）"""
    merged = dict(DEFAULT_PROXY_HEADERS)
    for key, value in (headers or {}).items():
        # 大文字小文字違いの既定ヘッダーは置き換える
        for default_key in list(merged):
            if default_key.lower() == str(key).lower():
                del merged[default_key]
        merged[str(key)] = str(value)
    return merged


class NetworkProxyAdapter:
    """
    fetchProxy の実行

    使用例:
        proxy = NetworkProxyAdapter(HttpClient())
        result = proxy.fetch("https://example.com/api", {'method': 'POST', 'body': '...'})
        # {'data': '...', 'status': 200}
    """

    def __init__(self, http_client: Optional[HttpClient] = None,
                 timeout: float = NETWORK_TIMEOUT,
                 logger: Callable[[str, str], None] = None):
        # 1回のfetchは timeout 秒以内に終える（urllib3 のリトライは行わない）
        self.http_client = http_client or HttpClient(logger=logger, default_timeout=timeout, max_retries=0)
        self.timeout = timeout
        self.logger = logger

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[NetworkProxy] {message}", level)

    def fetch(self, url: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        URLを取得し、サンドボックスに返す形式に変換

        Args:
            url: リクエストURL
            options: method / headers / body / data / responseType

        Returns:
            テキスト: {'data': str, 'status': int}
            バイナリ: {'data': '', 'rawData': base64, 'status': int, 'isBinary': True}
            失敗: {'data': '', 'status': 500, 'error': str}
        """
        options = options or {}
        method = options.get('method') or 'GET'
        headers = merge_headers(options.get('headers'))
        body = options.get('body') or options.get('data')
        binary = is_binary_request(url, options)

        if not binary:
            self.log(f"Proxying fetch: {method} {url}", "debug")

        deadline = time.monotonic() + self.timeout
        try:
            response = self.http_client.request(
                method,
                url,
                raise_for_status=False,
                headers=headers,
                data=self._encode_body(body),
                timeout=self.timeout,
                stream=True,
            )
            content = self._read_body(response, url, deadline)
        except (requests.exceptions.RequestException, NetworkProxyError) as e:
            error = e if isinstance(e, NetworkProxyError) else NetworkProxyError(str(e), url=url)
            self.log(f"Proxy fetch error: {url} - {error}", "warning")
            return {'data': '', 'status': error.status, 'error': str(error)}

        if binary:
            return {
                'data': '',
                'rawData': base64.b64encode(content).decode('ascii'),
                'status': response.status_code,
                'isBinary': True,
            }

        text = content.decode(response.encoding or 'utf-8', errors='replace')
        self.log(f"Response text length: {len(text)}", "debug")
        return {'data': text, 'status': response.status_code}

    def _read_body(self, response, url: str, deadline: float) -> bytes:
        """本文全体を deadline までに読み切る（超えたら NetworkProxyError）"""
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=PROXY_CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise NetworkProxyError(f"Proxy fetch exceeded {self.timeout:g}s", url=url)
                chunks.append(chunk)
        finally:
            response.close()
        return b''.join(chunks)

    @staticmethod
    def _encode_body(body: Any):
        if body is None or isinstance(body, (str, bytes)):
            return body
        if isinstance(body, dict):
            # フォームデータとして送る
            return body
        return json.dumps(body)
