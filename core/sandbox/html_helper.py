# -*- coding: utf-8 -*-
"""
HTMLヘルパー - 拡張スクリプトに渡す cheerio 風の HTML パーサー

使用例（拡張スクリプト内）:
    q = self.cheerio.load(response['data'])
    for item in q('div.manga-item'):
        title = item.find('a.title').text()
        url = item.find('a.title').attr('href')
"""

import copy
from typing import Any, Callable, Iterable, Iterator, List, Optional, Union

from bs4 import BeautifulSoup, NavigableString, Tag

PARSER = 'html.parser'


class MappedResult(list):
    """map() の結果（cheerio の .get() / .toArray() に相当）"""

    def get(self) -> list:
        return list(self)

    def to_array(self) -> list:
        return list(self)


class Selection:
    """要素集合のラッパー"""

    def __init__(self, elements: Iterable[Any]):
        self._elements: List[Any] = [el for el in elements if el is not None]

    # --- 集合として ---
    def __len__(self) -> int:
        return len(self._elements)

    @property
    def length(self) -> int:
        return len(self._elements)

    def __iter__(self) -> Iterator['Selection']:
        for el in self._elements:
            yield Selection([el])

    def __getitem__(self, index: int):
        return self._elements[index]

    def __bool__(self) -> bool:
        return bool(self._elements)

    def __repr__(self) -> str:
        return f"Selection({len(self._elements)} elements)"

    def get(self, index: Optional[int] = None):
        if index is None:
            return list(self._elements)
        try:
            return self._elements[index]
        except IndexError:
            return None

    def to_array(self) -> List['Selection']:
        return [Selection([el]) for el in self._elements]

    def first(self) -> 'Selection':
        return Selection(self._elements[:1])

    def last(self) -> 'Selection':
        return Selection(self._elements[-1:])

    def eq(self, index: int) -> 'Selection':
        try:
            return Selection([self._elements[index]])
        except IndexError:
            return Selection([])

    def each(self, fn: Callable[[int, 'Selection'], Any]) -> 'Selection':
        for i, el in enumerate(self._elements):
            if fn(i, Selection([el])) is False:
                break
        return self

    def map(self, fn: Callable[[int, 'Selection'], Any]) -> MappedResult:
        return MappedResult(fn(i, Selection([el])) for i, el in enumerate(self._elements))

    def filter(self, selector: Union[str, Callable[[int, 'Selection'], bool]]) -> 'Selection':
        if callable(selector):
            return Selection(el for i, el in enumerate(self._elements) if selector(i, Selection([el])))
        return Selection(el for el in self._elements if _matches(el, selector))

    # --- 探索 ---
    def find(self, selector: str) -> 'Selection':
        found = []
        for el in self._elements:
            if isinstance(el, Tag):
                found.extend(el.select(selector))
        return Selection(found)

    def children(self, selector: Optional[str] = None) -> 'Selection':
        kids = []
        for el in self._elements:
            if isinstance(el, Tag):
                kids.extend(child for child in el.children if isinstance(child, Tag))
        if selector:
            kids = [k for k in kids if _matches(k, selector)]
        return Selection(kids)

    def contents(self) -> 'Selection':
        nodes = []
        for el in self._elements:
            if isinstance(el, Tag):
                nodes.extend(el.contents)
        return Selection(nodes)

    def parent(self) -> 'Selection':
        parents = [el.parent for el in self._elements if isinstance(el.parent, Tag)]
        return Selection(parents)

    def next(self) -> 'Selection':
        return Selection(el.find_next_sibling() for el in self._elements if isinstance(el, Tag))

    def prev(self) -> 'Selection':
        return Selection(el.find_previous_sibling() for el in self._elements if isinstance(el, Tag))

    def siblings(self) -> 'Selection':
        result = []
        for el in self._elements:
            if isinstance(el, Tag) and isinstance(el.parent, Tag):
                result.extend(s for s in el.parent.children if isinstance(s, Tag) and s is not el)
        return Selection(result)

    def is_(self, selector: str) -> bool:
        return any(_matches(el, selector) for el in self._elements)

    # --- 値の取得 ---
    def text(self) -> str:
        return ''.join(_text_of(el) for el in self._elements).strip()

    def html(self) -> str:
        if not self._elements:
            return ''
        el = self._elements[0]
        if isinstance(el, Tag):
            return el.decode_contents()
        return str(el)

    def attr(self, name: str) -> str:
        el = self._first_tag()
        if el is None:
            return ''
        value = el.get(name)
        if isinstance(value, list):
            # class など複数値属性
            return ' '.join(value)
        return value or ''

    def data(self, name: str) -> str:
        return self.attr(f'data-{name}')

    def has_class(self, class_name: str) -> bool:
        return any(class_name in (el.get('class') or []) for el in self._elements if isinstance(el, Tag))

    # --- 変更 ---
    def add_class(self, class_name: str) -> 'Selection':
        for el in self._elements:
            if isinstance(el, Tag):
                classes = list(el.get('class') or [])
                if class_name not in classes:
                    classes.append(class_name)
                el['class'] = classes
        return self

    def remove_class(self, class_name: str) -> 'Selection':
        for el in self._elements:
            if isinstance(el, Tag) and el.get('class'):
                el['class'] = [c for c in el['class'] if c != class_name]
        return self

    def remove(self) -> 'Selection':
        for el in self._elements:
            el.extract()
        return self

    def clone(self) -> 'Selection':
        return Selection(copy.copy(el) for el in self._elements)

    def _first_tag(self) -> Optional[Tag]:
        for el in self._elements:
            if isinstance(el, Tag):
                return el
        return None


def _matches(el: Any, selector: str) -> bool:
    return isinstance(el, Tag) and el.css.match(selector)


def _text_of(el: Any) -> str:
    if isinstance(el, Tag):
        return el.get_text()
    if isinstance(el, NavigableString):
        return str(el)
    return ''


class CheerioAPI:
    """load() が返す $ 関数"""

    def __init__(self, html: str):
        self._soup = BeautifulSoup(html or '', PARSER)

    def __call__(self, selector: Any, context: Any = None) -> Selection:
        if isinstance(selector, Selection):
            return selector
        if not isinstance(selector, str):
            return Selection([selector])

        if selector.lstrip().startswith('<'):
            fragment = BeautifulSoup(selector, PARSER)
            return Selection(list(fragment.contents))

        if context is not None:
            if isinstance(context, str):
                roots = self._soup.select(context)
            elif isinstance(context, Selection):
                roots = context.get()
            else:
                roots = [context]
            found = []
            for root in roots:
                if isinstance(root, Tag):
                    found.extend(root.select(selector))
            return Selection(found)

        return Selection(self._soup.select(selector))

    def html(self) -> str:
        return str(self._soup)

    def text(self) -> str:
        body = self._soup.body or self._soup
        return body.get_text()

    def root(self) -> Selection:
        return Selection([self._soup.html or self._soup])


def load(html: str) -> CheerioAPI:
    """HTML文字列を解析して $ 関数を返す"""
    return CheerioAPI(html)


class HtmlHelper:
    """拡張スクリプトに `cheerio` として注入するオブジェクト"""

    @staticmethod
    def load(html: str) -> CheerioAPI:
        return load(html)


cheerio = HtmlHelper()
