# -*- coding: utf-8 -*-
"""
Core communication layer - ホストとサンドボックスの通信層
メッセージトランスポート、RPCチャネル、ホスト側の拡張ブリッジを担当
"""

from .message_transport import MessageEndpoint, create_transport_pair
from .rpc_channel import RpcChannel, PendingRequest
from .extension_bridge import ExtensionBridge

__all__ = [
    'MessageEndpoint',
    'create_transport_pair',
    'RpcChannel',
    'PendingRequest',
    'ExtensionBridge',
]
