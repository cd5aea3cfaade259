# -*- coding: utf-8 -*-
"""
アプリケーション情報管理
バージョン情報やアプリ名などを一元管理
"""

# アプリケーション名
APP_NAME = "Manga Bridge Downloader"

# バージョン情報
VERSION = "1.4"
VERSION_MAJOR = 1
VERSION_MINOR = 4
VERSION_PATCH = 0

# バージョン表示用文字列
VERSION_STRING = f"Ver{VERSION}"

# 起動時のメッセージ
STARTUP_MESSAGE = f"{APP_NAME} {VERSION_STRING} が起動しました"

# アプリケーションの説明
APP_DESCRIPTION = "拡張スクリプト経由でマンガのチャプターを取得し、オフライン閲覧用に保存するダウンローダー"
