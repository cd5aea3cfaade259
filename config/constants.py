# -*- coding: utf-8 -*-
"""
Constants for Manga Bridge Downloader
"""

import re

# Settings filename
SETTINGS_FILENAME = "mangabridge_settings.json"

# Storage filename (AsyncStorage相当のキー・バリューストア)
STORAGE_FILENAME = "mangabridge_storage.json"

# Downloads directory name
DOWNLOADS_DIR_NAME = "downloads"

# --- RPC ---
RPC_TIMEOUT = 30.0          # 汎用RPC（loadExtension / runMethod）
NETWORK_TIMEOUT = 60.0      # fetchProxy / 画像取得 / DRM復号
STATE_TIMEOUT = 5.0         # stateStore / stateRetrieve（タイムアウト時はメモリにフォールバック）
READY_TIMEOUT = 5.0         # サンドボックスのready通知待ち
PROXY_CHUNK_SIZE = 64 * 1024  # fetchProxy の本文読み込み単位（締め切り確認の間隔）

# RPC経由で60秒タイムアウトを使うメソッド
NETWORK_METHODS = ('decrypt_drm_image', 'fetch_image')

# --- Download ---
PARALLEL_CHAPTERS_WIFI = 3
PARALLEL_CHAPTERS_CELLULAR = 1
SCHEDULER_POLL_INTERVAL = 0.5
BACKGROUND_POLL_INTERVAL = 0.3
PAGE_FILE_EXTENSION = ".jpg"

# --- Storage keys ---
DOWNLOADS_METADATA_KEY = "@mangabridge_downloads"
INSTALLED_EXTENSIONS_KEY = "@installed_extensions_data"
EXTENSION_STATE_PREFIX = "@extension_state_"
KEYCHAIN_PREFIX = "keychain_"

# --- DRM ---
DRM_SCHEME = "drm://"
DRM_FRAGMENT_MARKER = "#drm_data="
DRM_QUERY_MARKER = "drm_data="

# 画像リクエスト判定（拡張子がURL末尾、?、#の直前にあるもの）
IMAGE_URL_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|webp)(\?|#|$)', re.IGNORECASE)

# --- Network ---
PROXY_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36'
)
EXTENSION_USER_AGENT = (
    'Mozilla/5.0 (Linux; Android 10) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36'
)
DEFAULT_PROXY_HEADERS = {
    'User-Agent': PROXY_USER_AGENT,
    'Accept': 'application/json, text/plain, */*',
}
IMAGE_ACCEPT_HEADER = 'image/*,*/*'

# 最小の拡張スクリプト長（これ未満は不正なスクリプトとして扱う）
MIN_SOURCE_SCRIPT_LENGTH = 100

# --- Imaging ---
JPEG_QUALITY = 85

# Default values
DEFAULT_VALUES = {
    'data_dir': ".mangabridge",
    'downloads_dir': DOWNLOADS_DIR_NAME,
    'rpc_timeout': RPC_TIMEOUT,
    'network_timeout': NETWORK_TIMEOUT,
    'state_timeout': STATE_TIMEOUT,
    'parallel_chapters_wifi': PARALLEL_CHAPTERS_WIFI,
    'parallel_chapters_cellular': PARALLEL_CHAPTERS_CELLULAR,
    'sandbox_workers': 4,
    'jpg_quality': JPEG_QUALITY,
    'debug_logging': False,
    'repositories': [
        {
            'id': 'pixiv',
            'name': 'Pixiv Paperback Extension',
            'base_url': 'https://chiraitori.github.io/paperback-extensions/main',
        },
    ],
}
