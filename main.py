# -*- coding: utf-8 -*-
"""
Manga Bridge Downloader - コマンドラインエントリポイント

使用例:
    python main.py list
    python main.py install pixiv
    python main.py chapters pixiv 12345
    python main.py download pixiv 12345 --chapter 678 --chapter 679
"""

import argparse
import json
import sys
import time
import traceback
from typing import List, Optional

from app_info import APP_DESCRIPTION, APP_NAME, STARTUP_MESSAGE, VERSION_STRING
from config.settings import Settings, load_settings
from core.communication import ExtensionBridge, create_transport_pair
from core.coordination import BackgroundDownloadTask, DownloadOrchestrator, EventBus, EventType, ThreadBackgroundExecutor
from core.managers import ExtensionStore, JsonKeyValueStore, SourceManager
from core.models import ChapterRef, MangaRef
from core.network import HttpClient, NetworkProxyAdapter, PsutilNetworkMonitor
from core.sandbox import SandboxHost
from utils.file_utils import LocalFileSystem
from utils.log_utils import console_log, make_logger, set_debug_enabled


class MangaBridgeApp:
    """各コンポーネントの組み立てとライフサイクル管理"""

    def __init__(self, settings: Settings):
        self.settings = settings
        set_debug_enabled(settings.debug_logging)

        self.store = JsonKeyValueStore(settings.storage_path, logger=console_log)
        self.http_client = HttpClient(logger=console_log, default_timeout=settings.network_timeout)
        self.proxy_http_client = HttpClient(logger=console_log, default_timeout=settings.network_timeout,
                                            max_retries=0)
        self.extension_store = ExtensionStore(self.store, self.http_client, logger=console_log)

        host_end, sandbox_end = create_transport_pair(logger=console_log)
        self.sandbox = SandboxHost(
            sandbox_end,
            max_workers=settings.sandbox_workers,
            network_timeout=settings.network_timeout,
            state_timeout=settings.state_timeout,
        )
        self.bridge = ExtensionBridge(
            host_end,
            NetworkProxyAdapter(self.proxy_http_client, timeout=settings.network_timeout, logger=console_log),
            self.store,
            logger=make_logger("Extension"),
            rpc_timeout=settings.rpc_timeout,
            network_timeout=settings.network_timeout,
        )
        self.source_manager = SourceManager(self.bridge, self.extension_store, self.http_client,
                                            logger=console_log)

        self.event_bus = EventBus(logger=console_log)
        self.orchestrator = DownloadOrchestrator(
            self.source_manager,
            LocalFileSystem(logger=console_log),
            self.store,
            PsutilNetworkMonitor(logger=console_log),
            settings.downloads_path,
            event_bus=self.event_bus,
            logger=console_log,
            parallel_wifi=settings.parallel_chapters_wifi,
            parallel_cellular=settings.parallel_chapters_cellular,
        )

    def start(self):
        self.event_bus.subscribe(EventType.CHAPTER_COMPLETED, self._on_chapter_finished)
        self.event_bus.subscribe(EventType.CHAPTER_FAILED, self._on_chapter_finished)
        self.event_bus.start()
        self.bridge.start()
        self.sandbox.start()
        if not self.bridge.wait_until_ready():
            console_log("サンドボックスの起動を確認できませんでした", "warning")

    def _on_chapter_finished(self, event):
        if event.type == EventType.CHAPTER_COMPLETED:
            console_log(f"チャプター完了: {event.data['chapter_id']}")
        else:
            console_log(f"チャプター失敗: {event.data['chapter_id']}", "warning")

    def stop(self):
        console_log(f"HTTP統計: {self.http_client.get_stats()}", "debug")
        self.orchestrator.shutdown(wait_workers=False)
        self.event_bus.stop()
        self.sandbox.stop()
        self.bridge.stop()
        self.http_client.close()
        self.proxy_http_client.close()


# ========================================
# サブコマンド
# ========================================

def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def cmd_list(app: MangaBridgeApp, args) -> int:
    installed = {ext.id for ext in app.extension_store.get_installed_extensions()}
    available = app.extension_store.fetch_all_extensions(app.settings.repositories)
    for repo_id, sources in available.items():
        print(f"== {repo_id} ==")
        for source in sources:
            mark = "*" if source.get('id') in installed else " "
            print(f" {mark} {source.get('id')}  {source.get('name', '')}  {source.get('version', '')}")
    return 0


def cmd_install(app: MangaBridgeApp, args) -> int:
    for repo in app.settings.repositories:
        if args.repo and repo['id'] != args.repo:
            continue
        versioning = app.extension_store.fetch_repository_versioning(repo['base_url'])
        for source in (versioning or {}).get('sources', []):
            if source.get('id') == args.extension_id:
                app.extension_store.install_extension(source, repo['base_url'])
                return 0
    console_log(f"拡張が見つかりません: {args.extension_id}", "error")
    return 1


def cmd_uninstall(app: MangaBridgeApp, args) -> int:
    return 0 if app.extension_store.uninstall_extension(args.extension_id) else 1


def cmd_search(app: MangaBridgeApp, args) -> int:
    _print_json(app.source_manager.search_manga(args.extension_id, args.query))
    return 0


def cmd_chapters(app: MangaBridgeApp, args) -> int:
    _print_json(app.source_manager.get_chapters(args.extension_id, args.manga_id))
    return 0


def cmd_pages(app: MangaBridgeApp, args) -> int:
    pages = app.source_manager.get_chapter_pages(args.extension_id, args.manga_id, args.chapter_id)
    _print_json(pages)
    return 0 if pages else 1


def cmd_settings(app: MangaBridgeApp, args) -> int:
    if args.set:
        path, _, value = args.set.partition('=')
        return 0 if app.source_manager.update_extension_setting(args.extension_id, path, json.loads(value)) else 1
    if args.tap:
        return 0 if app.source_manager.invoke_extension_setting_action(args.extension_id, args.tap) else 1
    _print_json(app.source_manager.get_extension_settings(args.extension_id))
    return 0


def cmd_download(app: MangaBridgeApp, args) -> int:
    details = app.source_manager.get_manga_details(args.extension_id, args.manga_id) or {}
    titles = details.get('titles') or [args.manga_id]
    manga = MangaRef(args.manga_id, title=str(titles[0]), cover_image=details.get('image', ''),
                     source=args.extension_id)

    chapters = app.source_manager.get_chapters(args.extension_id, args.manga_id)
    if args.chapter:
        chapters = [c for c in chapters if c['id'] in set(args.chapter)]
    if not chapters:
        console_log("ダウンロードするチャプターがありません", "error")
        return 1

    for chapter in chapters:
        app.orchestrator.download_chapter(manga, ChapterRef(chapter['id'], chapter['chapNum'], chapter['name']))

    executor = ThreadBackgroundExecutor(logger=console_log)
    BackgroundDownloadTask(app.orchestrator, executor, logger=console_log).start()
    while executor.is_running():
        time.sleep(0.5)

    downloaded = [c for c in chapters if app.orchestrator.is_chapter_downloaded(c['id'])]
    console_log(f"{len(downloaded)}/{len(chapters)} チャプターをダウンロードしました")
    return 0 if len(downloaded) == len(chapters) else 1


def cmd_downloads(app: MangaBridgeApp, args) -> int:
    for record in app.orchestrator.get_downloaded_chapters():
        print(f"{record.manga_title} / {record.chapter_title or record.chapter_number}"
              f"  ({len(record.pages)} pages, {record.size} bytes)  [{record.chapter_id}]")
    print(f"合計: {app.orchestrator.get_downloads_size()} bytes")
    return 0


def cmd_delete(app: MangaBridgeApp, args) -> int:
    return 0 if app.orchestrator.delete_chapter(args.chapter_id) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mangabridge", description=APP_DESCRIPTION)
    parser.add_argument('--version', action='version', version=f"{APP_NAME} {VERSION_STRING}")
    parser.add_argument('--settings', help="設定ファイルのパス")
    parser.add_argument('--debug', action='store_true', help="debugレベルのログを表示")
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('list', help="リポジトリの拡張一覧").set_defaults(func=cmd_list)

    p = sub.add_parser('install', help="拡張をインストール")
    p.add_argument('extension_id')
    p.add_argument('--repo', help="リポジトリID")
    p.set_defaults(func=cmd_install)

    p = sub.add_parser('uninstall', help="拡張をアンインストール")
    p.add_argument('extension_id')
    p.set_defaults(func=cmd_uninstall)

    p = sub.add_parser('search', help="タイトル検索")
    p.add_argument('extension_id')
    p.add_argument('query')
    p.set_defaults(func=cmd_search)

    p = sub.add_parser('chapters', help="チャプター一覧")
    p.add_argument('extension_id')
    p.add_argument('manga_id')
    p.set_defaults(func=cmd_chapters)

    p = sub.add_parser('pages', help="チャプターのページURL")
    p.add_argument('extension_id')
    p.add_argument('manga_id')
    p.add_argument('chapter_id')
    p.set_defaults(func=cmd_pages)

    p = sub.add_parser('settings', help="拡張の設定メニュー")
    p.add_argument('extension_id')
    p.add_argument('--set', metavar="PATH=JSON", help="値を設定（例: content/r18=true）")
    p.add_argument('--tap', metavar="PATH", help="ボタンを実行")
    p.set_defaults(func=cmd_settings)

    p = sub.add_parser('download', help="チャプターをダウンロード")
    p.add_argument('extension_id')
    p.add_argument('manga_id')
    p.add_argument('--chapter', action='append', help="チャプターID（複数指定可、省略時は全て）")
    p.set_defaults(func=cmd_download)

    sub.add_parser('downloads', help="ダウンロード済み一覧").set_defaults(func=cmd_downloads)

    p = sub.add_parser('delete', help="ダウンロード済みチャプターを削除")
    p.add_argument('chapter_id')
    p.set_defaults(func=cmd_delete)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.settings)
    if args.debug:
        settings.debug_logging = True

    app = MangaBridgeApp(settings)
    console_log(STARTUP_MESSAGE, "debug")
    try:
        if args.command not in ('list', 'install', 'uninstall', 'downloads', 'delete'):
            app.start()
        return args.func(app, args)
    except KeyboardInterrupt:
        print("アプリケーションが中断されました。")
        return 130
    except Exception as e:
        print(f"予期しないエラーが発生しました: {e}")
        traceback.print_exc()
        return 1
    finally:
        app.stop()


if __name__ == "__main__":
    sys.exit(main())
