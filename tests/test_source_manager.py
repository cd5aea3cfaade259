import base64

import pytest

from core.errors.error_types import DrmDecodeError, MethodNotFoundError, RPCTimeoutError
from core.managers import ExtensionStore, MemoryKeyValueStore, SourceManager
from tests.conftest import FakeHttpClient, FakeResponse

REPO = 'https://repo.example.com/main'
SCRIPT = "class Demo(Source):\n    pass\n" + "# padding\n" * 20 + "Sources.register('Demo', Demo)\n"


class FakeBridge:
    """ExtensionBridge の代わりに固定の結果を返す"""

    def __init__(self, results=None, load_ok=True):
        self.results = results or {}
        self.load_ok = load_ok
        self.loaded = set()
        self.loads = []
        self.calls = []

    def is_loaded(self, extension_id):
        return extension_id in self.loaded

    def load_extension(self, extension_id, source_script):
        self.loads.append((extension_id, source_script))
        if self.load_ok:
            self.loaded.add(extension_id)
        return self.load_ok

    def run_extension_method(self, extension_id, method, args=None):
        self.calls.append((method, list(args or [])))
        result = self.results.get(method)
        if isinstance(result, Exception):
            raise result
        return result(*(args or [])) if callable(result) else result


def make_manager(results=None, load_ok=True, responses=None, script=SCRIPT):
    http = FakeHttpClient(dict({REPO + '/demo/source.py': FakeResponse(script)}, **(responses or {})))
    store = ExtensionStore(MemoryKeyValueStore(), http)
    store.install_extension({'id': 'demo', 'name': 'Demo', 'version': '1.0'}, REPO)
    bridge = FakeBridge(results, load_ok)
    return SourceManager(bridge, store, http), bridge, store, http


def test_lazy_load_downloads_and_caches_script():
    manager, bridge, store, http = make_manager({'getChapters': []})

    manager.get_chapters('demo', 'm1')
    assert bridge.loads == [('demo', SCRIPT)]
    assert store.find_extension('demo').source_script == SCRIPT

    # 2回目以降はロードしない
    manager.get_chapters('demo', 'm1')
    assert len(bridge.loads) == 1
    assert len(http.calls) == 1


def test_cached_script_is_not_downloaded_again():
    manager, bridge, store, http = make_manager({'getChapters': []})
    store.update_source_script('demo', SCRIPT)

    manager.get_chapters('demo', 'm1')
    assert http.calls == []
    assert bridge.loads == [('demo', SCRIPT)]


def test_unknown_extension_returns_empty_results():
    manager, bridge, *_ = make_manager()
    assert manager.get_chapters('missing', 'm1') == []
    assert manager.search_manga('missing', 'q') == {'results': [], 'metadata': None}
    assert manager.get_manga_details('missing', 'm1') is None
    assert bridge.calls == []


def test_home_sections_fallback_when_load_fails():
    manager, *_ = make_manager(load_ok=False)

    assert manager.get_home_sections('demo') == [{
        'id': 'demo-browse',
        'title': 'Browse Demo',
        'items': [],
        'containsMoreItems': False,
    }]


def test_home_sections_are_normalized():
    sections = [{'id': 'latest', 'title': 'Latest', 'containsMoreItems': True,
                 'items': [{'mangaId': 'm1', 'title': 'One', 'image': 'https://img/1.jpg'}]}]
    manager, *_ = make_manager({'getHomePageSections': sections})

    result = manager.get_home_sections('demo')
    assert result[0]['items'][0] == {'id': 'm1', 'mangaId': 'm1', 'title': 'One',
                                     'image': 'https://img/1.jpg', 'subtitle': '', 'extensionId': 'demo'}
    assert result[0]['containsMoreItems'] is True


def test_search_passes_query_and_metadata():
    manager, bridge, *_ = make_manager({'getSearchResults': {
        'results': [{'id': 'm1', 'title': 'Found'}], 'metadata': {'page': 2}}})

    result = manager.search_manga('demo', 'found', {'page': 1})

    assert result['metadata'] == {'page': 2}
    assert result['results'][0]['title'] == 'Found'
    assert bridge.calls[-1] == ('getSearchResults', [{'title': 'found', 'includedTags': []}, {'page': 1}])

    manager.search_by_tag('demo', 'action')
    assert bridge.calls[-1][1][0]['includedTags'] == [{'id': 'action', 'label': ''}]


def test_search_error_returns_empty_page():
    manager, *_ = make_manager({'getSearchResults': RPCTimeoutError("slow")})
    assert manager.search_manga('demo', 'x') == {'results': [], 'metadata': None}
    assert manager.get_view_more_items('demo', 'latest') == {'results': [], 'metadata': None}


def test_manga_details_and_chapters():
    manager, *_ = make_manager({
        'getMangaDetails': {'id': 'm1', 'mangaInfo': {'titles': ['Demo'], 'author': 'A', 'image': 'i'}},
        'getChapters': [{'id': 12, 'chapNum': 3, 'name': 'Third', 'langCode': 'ja'}],
    })

    details = manager.get_manga_details('demo', 'm1')
    assert details['titles'] == ['Demo']
    assert details['author'] == 'A'
    assert details['tags'] == []

    assert manager.get_chapters('demo', 'm1') == [
        {'id': '12', 'chapNum': 3, 'name': 'Third', 'langCode': 'ja', 'time': '', 'group': ''}]


def test_tags_are_flattened():
    manager, *_ = make_manager({'getSearchTags': [
        {'id': 'genres', 'tags': [{'id': 'action', 'label': 'Action'}]},
        {'id': 'themes', 'tags': [{'id': 'school', 'title': 'School'}]},
    ]})
    assert manager.get_tags('demo') == [{'id': 'action', 'label': 'Action'},
                                        {'id': 'school', 'label': 'School'}]


def test_tags_without_method():
    manager, *_ = make_manager({'getSearchTags': MethodNotFoundError("no tags")})
    assert manager.get_tags('demo') == []


def test_chapter_pages():
    manager, *_ = make_manager({'getChapterDetails': {'pages': ['https://cdn/1.jpg', 'drm://demo/x#drm_data=1']}})
    assert manager.get_chapter_pages('demo', 'm1', 'c1') == ['https://cdn/1.jpg', 'drm://demo/x#drm_data=1']


def test_decrypt_drm_image():
    manager, *_ = make_manager({'decryptDrmImage': 'data:image/jpeg;base64,AAAA'})
    assert manager.decrypt_drm_image('demo', 'https://cdn/1.jpg#drm_data=1') == 'data:image/jpeg;base64,AAAA'


def test_decrypt_drm_image_failures():
    manager, *_ = make_manager({'decryptDrmImage': None})
    with pytest.raises(DrmDecodeError):
        manager.decrypt_drm_image('demo', 'https://cdn/1.jpg#drm_data=1')

    unavailable, *_ = make_manager(load_ok=False)
    with pytest.raises(DrmDecodeError):
        unavailable.decrypt_drm_image('demo', 'https://cdn/1.jpg#drm_data=1')


def test_fetch_image_prefers_extension():
    manager, bridge, store, http = make_manager({'fetchImage': 'data:image/jpeg;base64,BBBB'})
    assert manager.fetch_image('demo', 'https://cdn/1.jpg') == 'data:image/jpeg;base64,BBBB'
    assert not any(call['url'] == 'https://cdn/1.jpg' for call in http.calls)


def test_fetch_image_falls_back_to_direct_request():
    payload = b'\xff\xd8jpeg'
    manager, bridge, store, http = make_manager(
        {'fetchImage': DrmDecodeError("No rawData in response")},
        responses={'https://cdn/1.jpg': FakeResponse(content=payload)},
    )

    result = manager.fetch_image('demo', 'https://cdn/1.jpg')

    assert result == 'data:image/jpeg;base64,' + base64.b64encode(payload).decode('ascii')
    assert http.calls[-1]['headers']['Accept'] == 'image/*,*/*'


def test_fetch_image_returns_none_when_everything_fails():
    manager, *_ = make_manager({'fetchImage': None})
    assert manager.fetch_image('demo', 'https://offline/1.jpg') is None
    assert manager.fetch_image('missing', 'https://cdn/1.jpg') is None


def test_extension_settings():
    menu = {'id': 'main', 'header': 'Source Settings', 'isHidden': False,
            'rows': [{'id': 'r18', 'type': 'switch', 'value': False}]}
    manager, bridge, *_ = make_manager({
        'getSourceMenu': menu,
        'setSettingValue': True,
        'invokeSettingAction': False,
    })

    assert manager.has_extension_settings('demo')
    assert manager.get_extension_settings('demo') == {
        'id': 'main',
        'header': 'Source Settings',
        'sections': [{'id': 'main', 'header': 'Source Settings', 'rows': menu['rows'], 'isHidden': False}],
    }
    assert manager.update_extension_setting('demo', 'r18', True)
    assert bridge.calls[-1] == ('setSettingValue', ['r18', True])
    assert not manager.invoke_extension_setting_action('demo', 'reset')


def test_extension_without_settings():
    manager, *_ = make_manager({'getSourceMenu': MethodNotFoundError("none")})
    assert not manager.has_extension_settings('demo')
    assert manager.get_extension_settings('demo') is None


def test_extension_state_is_delegated():
    manager, bridge, store, http = make_manager()
    manager.set_extension_state('demo', 'token', 'abc')
    assert manager.get_extension_state('demo', 'token') == 'abc'
    assert store.get_extension_state('demo', 'token') == 'abc'
