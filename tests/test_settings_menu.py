from core.sandbox.capabilities import DUIBinding
from core.sandbox.settings_menu import (
    RowType,
    classify_row,
    find_row,
    invoke_setting_action,
    resolve_menu,
    set_setting_value_in_menu,
)


class Store:
    def __init__(self, **values):
        self.values = dict(values)

    def binding(self, key):
        return DUIBinding(get=lambda: self.values.get(key), set=lambda v: self.values.__setitem__(key, v))


def _broken_binding():
    def fail():
        raise RuntimeError("state unavailable")
    return DUIBinding(get=fail)


def test_classify_row_precedence():
    binding = DUIBinding(get=lambda: 'x')
    # form が最優先
    assert classify_row({'form': {}, 'on_tap': lambda: None}) == RowType.NAVIGATION
    assert classify_row({'on_tap': lambda: None, 'options': ['a']}) == RowType.BUTTON
    assert classify_row({'options': ['a'], 'is_label': True}) == RowType.SELECT
    assert classify_row({'is_label': True, 'value': binding}) == RowType.LABEL
    assert classify_row({'id': 'user', 'value': binding}) == RowType.INPUT
    assert classify_row({'id': 'password', 'value': binding}) == RowType.SECURE_INPUT
    assert classify_row({'id': 'token', 'is_secure': True, 'value': binding}) == RowType.SECURE_INPUT
    assert classify_row({'value': binding, 'on_value_change': lambda v: None}) == RowType.SWITCH
    assert classify_row({'minValue': 1, 'maxValue': 5}) == RowType.STEPPER
    assert classify_row({'id': 'plain'}) == RowType.LABEL


def _menu(store, taps):
    return {
        'id': 'main',
        'header': 'Source Settings',
        'rows': lambda: [
            {
                'id': 'content',
                'label': 'Content',
                'form': {
                    'sections': lambda: [
                        {
                            'id': 'filters',
                            'header': 'Filters',
                            'rows': lambda: [
                                {'id': 'r18', 'label': 'R-18', 'value': store.binding('r18'),
                                 'on_value_change': lambda v: None},
                                {'id': 'langs', 'label': 'Languages', 'options': ['en', 'ja'],
                                 'allows_multiselect': True, 'value': store.binding('langs'),
                                 'label_resolver': lambda option: option.upper()},
                            ],
                        },
                    ],
                },
            },
            {'id': 'pages', 'label': 'Pages', 'min_value': 1, 'max_value': 10, 'step': 2},
            {'id': 'name', 'label': 'Name', 'value': store.binding('name')},
            {'id': 'broken', 'label': 'Broken', 'value': _broken_binding(),
             'on_value_change': lambda v: None},
            {'id': 'reset', 'label': 'Reset', 'on_tap': lambda: taps.append('reset')},
        ],
    }


def test_resolve_menu_evaluates_lazy_rows_and_bindings():
    store = Store(r18=True, langs=['ja'], name='bob')
    menu = resolve_menu(_menu(store, []))

    assert menu['id'] == 'main'
    rows = {row['id']: row for row in menu['rows']}
    assert rows['reset'] == {'id': 'reset', 'label': 'Reset', 'type': 'button', 'hasOnTap': True}
    assert rows['pages']['type'] == 'stepper'
    assert rows['pages']['step'] == 2
    assert rows['pages']['minValue'] == 1
    assert rows['name'] == {'id': 'name', 'label': 'Name', 'type': 'input', 'value': 'bob'}
    # 読み取りに失敗したバインディングは種別の既定値
    assert rows['broken']['value'] is False

    section = rows['content']['form'][0]
    assert section['id'] == 'filters'
    inner = {row['id']: row for row in section['rows']}
    assert inner['r18'] == {'id': 'r18', 'label': 'R-18', 'type': 'switch', 'value': True}
    assert inner['langs']['value'] == ['ja']
    assert inner['langs']['allowsMultiselect'] is True
    assert inner['langs']['optionLabels'] == {'en': 'EN', 'ja': 'JA'}


def test_resolve_menu_without_menu():
    assert resolve_menu(None) is None


def test_set_value_by_path():
    store = Store(r18=False, name='')
    menu = _menu(store, [])

    assert set_setting_value_in_menu(menu, 'content/filters/r18', True)
    assert store.values['r18'] is True
    # セクションIDを省略すると先頭セクション
    assert set_setting_value_in_menu(menu, 'content/r18', False)
    assert store.values['r18'] is False
    assert set_setting_value_in_menu(menu, 'name', 'alice')
    assert store.values['name'] == 'alice'


def test_set_value_unknown_path_or_read_only():
    menu = _menu(Store(), [])
    assert not set_setting_value_in_menu(menu, 'content/missing', 1)
    assert not set_setting_value_in_menu(menu, '', 1)
    # 読み取り専用のバインディングは例外を返さず False
    assert not set_setting_value_in_menu(menu, 'broken', True)
    assert not set_setting_value_in_menu(menu, 'reset', True)


def test_invoke_action():
    taps = []
    menu = _menu(Store(), taps)

    assert invoke_setting_action(menu, 'reset')
    assert taps == ['reset']
    assert not invoke_setting_action(menu, 'pages')


def test_find_row_enters_section_by_id_from_rows():
    menu = _menu(Store(), [])
    assert find_row(menu, 'filters/langs')['id'] == 'langs'
