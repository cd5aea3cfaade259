# -*- coding: utf-8 -*-
"""
設定メニューの解決

拡張が宣言する設定UI（DUI）の木を、遅延評価の rows / sections や
値バインディングを全て評価した素の辞書に変換する。
パス指定（"domain_settings/content/domain"）による値の設定とボタン操作も扱う。
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.sandbox.capabilities import get_field, is_binding, resolve_awaitable

LogFunc = Callable[[str], None]


class RowType(Enum):
    NAVIGATION = "navigation"
    BUTTON = "button"
    SELECT = "select"
    LABEL = "label"
    SECURE_INPUT = "secureInput"
    INPUT = "input"
    SWITCH = "switch"
    STEPPER = "stepper"


# 行のフィールド名（Python名, 互換用のcamelCase名）
FORM = ('form',)
ON_TAP = ('on_tap', 'onTap')
OPTIONS = ('options',)
IS_LABEL = ('is_label', '_isLabel')
IS_SECURE = ('is_secure', '_isSecure')
VALUE = ('value',)
ON_VALUE_CHANGE = ('on_value_change', 'onValueChange')
MIN_VALUE = ('min_value', 'minValue')
MAX_VALUE = ('max_value', 'maxValue')
STEP = ('step',)
LABEL_RESOLVER = ('label_resolver', 'labelResolver')
ALLOWS_MULTISELECT = ('allows_multiselect', 'allowsMultiselect')

# バインディングの読み取りに失敗した場合の既定値
TYPE_DEFAULTS = {
    RowType.SELECT: [],
    RowType.INPUT: '',
    RowType.SECURE_INPUT: '',
    RowType.SWITCH: False,
    RowType.STEPPER: 0,
}


def _has(row: Any, names) -> bool:
    return get_field(row, *names) is not None


def _noop_log(message: str):
    pass


def classify_row(row: Any) -> RowType:
    """
    行の種別を判定（順序が意味を持つ）

    form → navigation、on_tap → button、options → select、is_label → label、
    バインディングのみ → input / secureInput、バインディング＋on_value_change → switch、
    min_value / max_value → stepper、それ以外は label
    """
    if _has(row, FORM):
        return RowType.NAVIGATION
    if _has(row, ON_TAP):
        return RowType.BUTTON
    if _has(row, OPTIONS):
        return RowType.SELECT
    if get_field(row, *IS_LABEL) is True:
        return RowType.LABEL

    value = get_field(row, *VALUE)
    if is_binding(value) and not _has(row, ON_VALUE_CHANGE):
        row_id = str(get_field(row, 'id', default='')).lower()
        label = str(get_field(row, 'label', default='')).lower()
        if 'password' in row_id or 'password' in label or get_field(row, *IS_SECURE) is True:
            return RowType.SECURE_INPUT
        return RowType.INPUT
    if is_binding(value):
        return RowType.SWITCH

    if _has(row, MIN_VALUE) or _has(row, MAX_VALUE):
        return RowType.STEPPER
    return RowType.LABEL


def _rows_of(container: Any, log: LogFunc) -> List[Any]:
    """rows（リストまたは関数）を評価"""
    return _lazy_list(get_field(container, 'rows'), 'rows', log)


def _sections_of(form: Any, log: LogFunc) -> List[Any]:
    return _lazy_list(get_field(form, 'sections'), 'sections', log)


def _lazy_list(value: Any, what: str, log: LogFunc) -> List[Any]:
    if callable(value):
        try:
            value = resolve_awaitable(value())
        except Exception as e:
            log(f"Error resolving {what}: {e}")
            return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def _read_binding(binding: Any, default: Any, log: LogFunc) -> Any:
    try:
        return resolve_awaitable(binding.get())
    except Exception as e:
        log(f"Error getting binding value: {e}")
        return default


def resolve_row(row: Any, log: LogFunc = _noop_log) -> Optional[Dict[str, Any]]:
    if row is None:
        return None

    row_type = classify_row(row)
    resolved: Dict[str, Any] = {
        'id': get_field(row, 'id'),
        'label': get_field(row, 'label', default=''),
        'type': row_type.value,
    }
    value = get_field(row, *VALUE)

    if row_type == RowType.NAVIGATION:
        resolved['form'] = resolve_form(get_field(row, *FORM), log)

    elif row_type == RowType.BUTTON:
        resolved['hasOnTap'] = True

    elif row_type == RowType.SELECT:
        options = list(get_field(row, *OPTIONS) or [])
        resolved['options'] = options
        resolved['allowsMultiselect'] = bool(get_field(row, *ALLOWS_MULTISELECT, default=False))
        if is_binding(value):
            resolved['value'] = _read_binding(value, TYPE_DEFAULTS[row_type], log)
        label_resolver = get_field(row, *LABEL_RESOLVER)
        if callable(label_resolver):
            labels = {}
            for option in options:
                try:
                    labels[option] = resolve_awaitable(label_resolver(option))
                except Exception:
                    labels[option] = option
            resolved['optionLabels'] = labels

    elif row_type in (RowType.INPUT, RowType.SECURE_INPUT, RowType.SWITCH):
        resolved['value'] = _read_binding(value, TYPE_DEFAULTS[row_type], log)

    elif row_type == RowType.STEPPER:
        resolved['minValue'] = get_field(row, *MIN_VALUE)
        resolved['maxValue'] = get_field(row, *MAX_VALUE)
        resolved['step'] = get_field(row, *STEP) or 1
        if is_binding(value):
            resolved['value'] = _read_binding(value, TYPE_DEFAULTS[row_type], log)

    return resolved


def resolve_section(section: Any, log: LogFunc = _noop_log) -> Optional[Dict[str, Any]]:
    if section is None:
        return None
    rows = [resolve_row(row, log) for row in _rows_of(section, log)]
    return {
        'id': get_field(section, 'id', default='section'),
        'header': get_field(section, 'header'),
        'footer': get_field(section, 'footer'),
        'isHidden': bool(get_field(section, 'is_hidden', 'isHidden', default=False)),
        'rows': [row for row in rows if row is not None],
    }


def resolve_form(form: Any, log: LogFunc = _noop_log) -> List[Dict[str, Any]]:
    if form is None:
        return []
    sections = [resolve_section(section, log) for section in _sections_of(form, log)]
    return [section for section in sections if section is not None]


def resolve_menu(menu: Any, log: LogFunc = _noop_log) -> Optional[Dict[str, Any]]:
    """
    メニュー全体を解決

    Returns:
        {'id', 'header', 'isHidden', 'rows'}、メニューが無い場合は None
    """
    if not menu:
        return None
    rows = [resolve_row(row, log) for row in _rows_of(menu, log)]
    return {
        'id': get_field(menu, 'id', default='main'),
        'header': get_field(menu, 'header', default='Source Settings'),
        'isHidden': bool(get_field(menu, 'is_hidden', 'isHidden', default=False)),
        'rows': [row for row in rows if row is not None],
    }


# ========================================
# パス指定による操作
# ========================================

def _find_by_id(items: List[Any], item_id: str) -> Optional[Any]:
    for item in items:
        if get_field(item, 'id') == item_id:
            return item
    return None


def find_row(menu: Any, path: str, log: LogFunc = _noop_log) -> Optional[Any]:
    """
    '/' 区切りのパスで行を探す

    途中の要素は、現在の行のIDに一致すればそのフォームに入り（次の要素がセクションIDなら
    そのセクション、無ければ先頭セクション）、行に無い場合はフォーム内のセクションIDを探す。
    """
    parts = [part for part in str(path).split('/') if part != '']
    if not parts:
        return None

    current_rows = _rows_of(menu, log)
    i = 0
    while i < len(parts) - 1:
        part_id = parts[i]
        row = _find_by_id(current_rows, part_id)

        if row is None:
            entered = None
            for candidate in current_rows:
                form = get_field(candidate, *FORM)
                if form is None:
                    continue
                entered = _find_by_id(_sections_of(form, log), part_id)
                if entered is not None:
                    break
            if entered is None:
                log(f"Could not find: {part_id}")
                return None
            current_rows = _rows_of(entered, log)
            i += 1
            continue

        form = get_field(row, *FORM)
        if form is not None:
            sections = _sections_of(form, log)
            next_part = parts[i + 1]
            section = _find_by_id(sections, next_part)
            if section is not None:
                current_rows = _rows_of(section, log)
                i += 2
                continue
            if sections:
                current_rows = _rows_of(sections[0], log)
        i += 1

    target = _find_by_id(current_rows, parts[-1])
    if target is None:
        log(f"Target row not found: {parts[-1]}")
    return target


def set_setting_value_in_menu(menu: Any, path: str, value: Any, log: LogFunc = _noop_log) -> bool:
    """パスで指定した行のバインディングに値を設定（失敗しても例外は送出しない）"""
    try:
        row = find_row(menu, path, log)
        if row is None:
            return False
        binding = get_field(row, *VALUE)
        if binding is None or not callable(getattr(binding, 'set', None)):
            log("Target row has no value.set function")
            return False
        resolve_awaitable(binding.set(value))
        return True
    except Exception as e:
        log(f"Error setting value: {e}")
        return False


def invoke_setting_action(menu: Any, path: str, log: LogFunc = _noop_log) -> bool:
    """パスで指定したボタンの on_tap を実行（失敗しても例外は送出しない）"""
    try:
        row = find_row(menu, path, log)
        if row is None:
            return False
        on_tap = get_field(row, *ON_TAP)
        if not callable(on_tap):
            log("Target row has no on_tap function")
            return False
        resolve_awaitable(on_tap())
        return True
    except Exception as e:
        log(f"Error invoking on_tap: {e}")
        return False
