import json

import pytest

import main
from config.constants import DOWNLOADS_METADATA_KEY
from config.settings import load_settings
from core.managers import JsonKeyValueStore
from utils.log_utils import console_log, make_logger, set_debug_enabled


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / 'settings.json'
    path.write_text(json.dumps({'data_dir': str(tmp_path / 'data'), 'repositories': []}), encoding='utf-8')
    return path


def _record(chapter_id):
    return {'mangaId': 'm1', 'chapterId': chapter_id, 'mangaTitle': 'Demo', 'chapterNumber': 1,
            'pages': ['file:///tmp/0.jpg'], 'size': 3}


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args([])
    args = main.build_parser().parse_args(['download', 'pixiv', 'm1', '--chapter', 'c1', '--chapter', 'c2'])
    assert args.chapter == ['c1', 'c2']
    assert args.func is main.cmd_download


def test_downloads_and_delete(settings_file, tmp_path, capsys):
    store = JsonKeyValueStore(str(tmp_path / 'data' / 'mangabridge_storage.json'))
    store.set_item(DOWNLOADS_METADATA_KEY, json.dumps([_record('c1')]))

    assert main.main(['--settings', str(settings_file), 'downloads']) == 0
    assert 'Demo' in capsys.readouterr().out

    assert main.main(['--settings', str(settings_file), 'delete', 'c1']) == 0
    assert main.main(['--settings', str(settings_file), 'delete', 'c1']) == 1


def test_uninstall_unknown_extension(settings_file):
    assert main.main(['--settings', str(settings_file), 'uninstall', 'nothing']) == 1


def test_make_logger_prefixes_messages():
    lines = []
    log = make_logger("Extension", lambda message, level: lines.append((message, level)))
    log("loaded", "debug")
    assert lines == [("[Extension] loaded", "debug")]


def test_console_log_hides_debug_unless_enabled(capsys):
    set_debug_enabled(False)
    console_log("hidden", "debug")
    console_log("shown", "warning")
    set_debug_enabled(True)
    console_log("visible", "debug")
    set_debug_enabled(False)

    out = capsys.readouterr().out
    assert "hidden" not in out
    assert "[WARNING] shown" in out
    assert "[DEBUG] visible" in out


def test_app_start_runs_event_bus_worker(settings_file):
    app = main.MangaBridgeApp(load_settings(str(settings_file)))
    app.start()
    try:
        assert app.event_bus.is_running
    finally:
        app.stop()
    assert not app.event_bus.is_running
