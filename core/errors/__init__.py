# -*- coding: utf-8 -*-
"""
Core errors layer - エラー処理層
ブリッジ・ダウンロードの例外階層とResult型を担当
"""

from .error_types import (
    BridgeError,
    SandboxLoadError,
    ExtensionNotLoadedError,
    MethodNotFoundError,
    RPCTimeoutError,
    RPCRemoteError,
    NetworkProxyError,
    DrmDecodeError,
    DownloadPageError,
    BridgeResult,
    BridgeStage,
    error_from_wire,
    error_type_name,
)

__all__ = [
    'BridgeError',
    'SandboxLoadError',
    'ExtensionNotLoadedError',
    'MethodNotFoundError',
    'RPCTimeoutError',
    'RPCRemoteError',
    'NetworkProxyError',
    'DrmDecodeError',
    'DownloadPageError',
    'BridgeResult',
    'BridgeStage',
    'error_from_wire',
    'error_type_name',
]
