# -*- coding: utf-8 -*-
"""
ネットワーク種別の判定

稼働中のネットワークインターフェースから wifi / cellular / ethernet を推定する。
並列ダウンロード数の決定に使う。
"""

import threading
from enum import Enum
from typing import Callable, Optional

import psutil

from core.interfaces import INetworkMonitor


class NetworkType(Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    NONE = "none"
    UNKNOWN = "unknown"


# インターフェース名の接頭辞による分類
WIFI_PREFIXES = ('wl', 'wlan', 'wifi', 'wi-fi', 'en0', 'airport')
CELLULAR_PREFIXES = ('wwan', 'rmnet', 'ppp', 'ccmni', 'pdp_ip', 'usb')
ETHERNET_PREFIXES = ('eth', 'en', 'ethernet')


def classify_interface(name: str) -> NetworkType:
    """インターフェース名からネットワーク種別を推定"""
    lowered = name.lower()
    if lowered.startswith(WIFI_PREFIXES):
        return NetworkType.WIFI
    if lowered.startswith(CELLULAR_PREFIXES):
        return NetworkType.CELLULAR
    if lowered.startswith(ETHERNET_PREFIXES):
        return NetworkType.ETHERNET
    return NetworkType.UNKNOWN


class PsutilNetworkMonitor(INetworkMonitor):
    """
    psutil によるネットワーク種別の判定

    稼働中（isup）でループバック以外のインターフェースを見て、
    wifi > ethernet > cellular の優先順で種別を返す。
    """

    def __init__(self, logger: Callable[[str, str], None] = None):
        self.logger = logger

    def get_network_type(self) -> NetworkType:
        stats = psutil.net_if_stats()
        addrs = psutil.net_if_addrs()

        found = set()
        for name, stat in stats.items():
            if not stat.isup or name.lower().startswith('lo'):
                continue
            if not addrs.get(name):
                continue
            found.add(classify_interface(name))

        for candidate in (NetworkType.WIFI, NetworkType.ETHERNET, NetworkType.CELLULAR):
            if candidate in found:
                return candidate
        return NetworkType.UNKNOWN if found else NetworkType.NONE


class StaticNetworkMonitor(INetworkMonitor):
    """固定のネットワーク種別を返す（設定による上書き・テスト用）"""

    def __init__(self, network_type: NetworkType = NetworkType.WIFI):
        self._network_type = network_type
        self._lock = threading.Lock()

    def set_network_type(self, network_type: NetworkType):
        with self._lock:
            self._network_type = network_type

    def get_network_type(self) -> NetworkType:
        with self._lock:
            return self._network_type


def is_unmetered(network_type: Optional[NetworkType]) -> bool:
    """並列ダウンロードを許可する回線か（wifi・有線）"""
    return network_type in (NetworkType.WIFI, NetworkType.ETHERNET)
