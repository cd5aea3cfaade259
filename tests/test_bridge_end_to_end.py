import textwrap

import pytest

from core.communication import ExtensionBridge, create_transport_pair
from core.errors.error_types import MethodNotFoundError
from core.managers import MemoryKeyValueStore
from core.network import NetworkProxyAdapter
from core.sandbox import SandboxHost
from tests.conftest import FakeHttpClient, FakeResponse

DEMO_SCRIPT = textwrap.dedent('''
    class Demo(Source):
        def __init__(self, cheerio):
            super().__init__(cheerio)
            self.request_manager = App.create_request_manager({})
            self.state_manager = App.create_source_state_manager()

        def get_chapters(self, manga_id):
            self.state_manager.store('last', manga_id)
            response = self.request_manager.schedule(
                App.create_request({'url': 'https://demo.example.com/manga/' + manga_id}), 1)
            q = self.cheerio.load(response['data'])
            return [App.create_chapter({'id': item.attr('data-id'), 'name': item.text(), 'chapNum': i + 1})
                    for i, item in enumerate(q('li.chapter'))]

        def get_last(self):
            return self.state_manager.retrieve('last')

        def get_chapter_details(self, manga_id, chapter_id):
            return {'pages': ['https://cdn.example.com/a.jpg#drm_data=k1', 'https://cdn.example.com/b.jpg']}

    Sources.register('Demo', Demo)
''')

CHAPTER_HTML = '''
<ul>
  <li class="chapter" data-id="c1">Chapter 1</li>
  <li class="chapter" data-id="c2">Chapter 2</li>
</ul>
'''


@pytest.fixture
def bridge_pair():
    http = FakeHttpClient({'https://demo.example.com/manga/m1': FakeResponse(CHAPTER_HTML)})
    store = MemoryKeyValueStore()
    host_end, sandbox_end = create_transport_pair()
    sandbox = SandboxHost(sandbox_end, network_timeout=5, state_timeout=5)
    bridge = ExtensionBridge(host_end, NetworkProxyAdapter(http, timeout=5), store,
                             rpc_timeout=5, network_timeout=5)
    bridge.start()
    sandbox.start()
    yield bridge, sandbox, store, http
    sandbox.stop()
    bridge.stop()


def test_ready_and_load(bridge_pair):
    bridge, sandbox, store, http = bridge_pair

    assert bridge.wait_until_ready(timeout=5)
    assert bridge.load_extension('demo', DEMO_SCRIPT)
    assert bridge.is_loaded('demo')
    assert sandbox.is_loaded('demo')


def test_run_method_uses_proxy_cheerio_and_state(bridge_pair):
    bridge, sandbox, store, http = bridge_pair
    bridge.load_extension('demo', DEMO_SCRIPT)

    chapters = bridge.run_extension_method('demo', 'getChapters', ['m1'])

    assert chapters == [
        {'id': 'c1', 'name': 'Chapter 1', 'chapNum': 1},
        {'id': 'c2', 'name': 'Chapter 2', 'chapNum': 2},
    ]
    assert http.calls[0]['url'] == 'https://demo.example.com/manga/m1'
    assert store.get_item('@extension_state_demo_last') == '"m1"'
    assert bridge.run_extension_method('demo', 'getLast') == 'm1'


def test_chapter_details_are_tagged(bridge_pair):
    bridge, *_ = bridge_pair
    bridge.load_extension('demo', DEMO_SCRIPT)

    details = bridge.run_extension_method('demo', 'getChapterDetails', ['m1', 'c1'])

    assert details['pages'] == [
        'drm://demo/https://cdn.example.com/a.jpg#drm_data=k1',
        'https://cdn.example.com/b.jpg',
    ]


def test_errors_cross_the_boundary(bridge_pair):
    bridge, *_ = bridge_pair
    bridge.load_extension('demo', DEMO_SCRIPT)

    with pytest.raises(MethodNotFoundError):
        bridge.run_extension_method('demo', 'getSearchResults', [{}])


def test_bad_script_does_not_load(bridge_pair):
    bridge, sandbox, *_ = bridge_pair

    assert not bridge.load_extension('broken', 'def nope(:\n')
    assert not bridge.is_loaded('broken')
    # ホストは継続して他の拡張を扱える
    assert bridge.load_extension('demo', DEMO_SCRIPT)
