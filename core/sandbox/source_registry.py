# -*- coding: utf-8 -*-
"""
ソースレジストリ - 拡張スクリプトが公開するクラスの登録先

スクリプトは注入された `Sources` に登録する:

    class Pixiv(Source):
        ...

    Sources.register('Pixiv', Pixiv)

または `@Sources.register` デコレータ、`Sources['Pixiv'] = Pixiv` も使える。
ロードのたびに新しいレジストリを作り、前の拡張の登録が混ざらないようにする。
"""

from typing import Any, Dict, Iterator, List, Mapping, Optional

from core.errors.error_types import SandboxLoadError


class SourceRegistry:
    """拡張クラスの登録表（挿入順を保持）"""

    def __init__(self):
        self._entries: Dict[str, Any] = {}

    def register(self, name_or_class: Any = None, source_class: Any = None):
        """
        クラスを登録

        register('Name', Cls) / register(Cls) / @register / @register('Name') の形に対応
        """
        if source_class is not None:
            self._entries[str(name_or_class)] = source_class
            return source_class

        if isinstance(name_or_class, str):
            name = name_or_class

            def decorator(cls):
                self._entries[name] = cls
                return cls
            return decorator

        if name_or_class is None:
            return self.register

        self._entries[getattr(name_or_class, '__name__', str(name_or_class))] = name_or_class
        return name_or_class

    def __setitem__(self, name: str, source_class: Any):
        self._entries[str(name)] = source_class

    def __getitem__(self, name: str) -> Any:
        return self._entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def update(self, other: Mapping[str, Any]):
        for name, source_class in other.items():
            self._entries[str(name)] = source_class

    def find(self, extension_id: str) -> Optional[Any]:
        """
        拡張IDに対応するクラスを探す

        完全一致 → 大文字小文字を無視した一致 → 登録が1件だけならそれ、の順に探す。
        登録が複数あり特定できない場合は SandboxLoadError。
        登録が無い場合は None。
        """
        if not self._entries:
            return None

        if extension_id in self._entries:
            return self._entries[extension_id]

        lowered = extension_id.lower()
        for name, source_class in self._entries.items():
            if name.lower() == lowered:
                return source_class

        if len(self._entries) == 1:
            return next(iter(self._entries.values()))

        raise SandboxLoadError(
            f"Extension class not found for {extension_id}. Available: {', '.join(self._entries)}",
            extension_id=extension_id,
        )
