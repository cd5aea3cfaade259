# -*- coding: utf-8 -*-
"""
Core network layer - ネットワーク通信層
HTTP通信、サンドボックス向けプロキシfetch、ネットワーク種別の判定を担当
"""

from .http_client import HttpClient
from .network_proxy import NetworkProxyAdapter, is_binary_request, merge_headers
from .network_monitor import NetworkType, PsutilNetworkMonitor, StaticNetworkMonitor

__all__ = [
    'HttpClient',
    'NetworkProxyAdapter',
    'is_binary_request',
    'merge_headers',
    'NetworkType',
    'PsutilNetworkMonitor',
    'StaticNetworkMonitor',
]
