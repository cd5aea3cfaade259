"""メソッド名の変換（通信上の camelCase と Python の snake_case）"""

import re

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


def to_snake_case(name: str) -> str:
    """getChapterDetails → get_chapter_details（snake_case はそのまま）"""
    return _CAMEL_BOUNDARY.sub('_', name).lower()


def to_camel_case(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)
