# -*- coding: utf-8 -*-
"""
エラー処理の型定義（ブリッジ・ダウンロード共通）

例外はコンポーネントの境界（RPC、サンドボックスのディスパッチ、
プロキシfetch、ページ取得、スケジューラのジョブ）で捕捉し、
構造化された結果に変換する。それ以外は呼び出し元に伝播させる。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Type


class BridgeError(Exception):
    """拡張ブリッジ関連エラーの基底クラス"""
    pass


class SandboxLoadError(BridgeError):
    """拡張スクリプトの読み込み失敗（スクリプト不正 / クラス特定不能）

    その拡張だけが無効になり、ホストは継続する。
    """
    def __init__(self, message, extension_id=""):
        super().__init__(message)
        self.extension_id = extension_id


class ExtensionNotLoadedError(BridgeError):
    """未ロードの拡張に対してメソッドを呼び出した"""
    pass


class MethodNotFoundError(BridgeError):
    """拡張インスタンスに該当メソッドが存在しない"""
    pass


class RPCTimeoutError(BridgeError):
    """RPC応答がタイムアウトした（リモート側はキャンセルされない）"""
    def __init__(self, message, request_id=0, request_type=""):
        super().__init__(message)
        self.request_id = request_id
        self.request_type = request_type


class RPCRemoteError(BridgeError):
    """リモート側で発生した型不明のエラー"""
    pass


class NetworkProxyError(BridgeError):
    """プロキシfetchの失敗

    例外として投げず、ステータス500の構造化結果として返すために使う。
    """
    def __init__(self, message, url="", status=500):
        super().__init__(message)
        self.url = url
        self.status = status


class DrmDecodeError(BridgeError):
    """DRM復号・画像取得のレスポンスにバイナリが含まれていない"""
    pass


class DownloadPageError(Exception):
    """1ページ分のダウンロード失敗（ログに記録してスキップする）"""
    def __init__(self, message, chapter_id="", page=0, url=""):
        super().__init__(message)
        self.chapter_id = chapter_id
        self.page = page
        self.url = url


# RPCのerrorTypeから例外クラスを復元するためのテーブル
WIRE_ERROR_TYPES: Dict[str, Type[Exception]] = {
    cls.__name__: cls for cls in (
        SandboxLoadError,
        ExtensionNotLoadedError,
        MethodNotFoundError,
        RPCTimeoutError,
        NetworkProxyError,
        DrmDecodeError,
    )
}


def error_from_wire(message: str, error_type: Optional[str] = None) -> Exception:
    """RPCレスポンスの error / errorType から例外を生成"""
    cls = WIRE_ERROR_TYPES.get(error_type or "", RPCRemoteError)
    return cls(message)


def error_type_name(error: BaseException) -> str:
    """例外をRPCレスポンスの errorType 文字列に変換"""
    name = type(error).__name__
    return name if name in WIRE_ERROR_TYPES else "Error"


class BridgeStage(Enum):
    """ブリッジ処理のステージ"""
    LOAD = "load"
    RUN_METHOD = "run_method"
    FETCH_PROXY = "fetch_proxy"
    STATE = "state"
    DECODE = "decode"


@dataclass
class BridgeResult:
    """
    サンドボックス処理の結果（Result型パターン）

    エラー処理を例外ではなく明示的な戻り値で表現し、
    RPCレスポンスへの変換を一箇所にまとめる。
    """
    success: bool
    data: Any = None
    error: Optional[Exception] = None
    stage: Optional[BridgeStage] = None

    @classmethod
    def success_result(cls, data: Any, stage: Optional[BridgeStage] = None) -> 'BridgeResult':
        """成功結果を生成"""
        return cls(success=True, data=data, stage=stage)

    @classmethod
    def failure_result(cls, error: Exception, stage: Optional[BridgeStage] = None) -> 'BridgeResult':
        """失敗結果を生成"""
        return cls(success=False, error=error, stage=stage)

    def to_response(self, request_id: int) -> Dict[str, Any]:
        """RPCレスポンス形式に変換"""
        if self.success:
            return {'requestId': request_id, 'result': self.data}
        return {
            'requestId': request_id,
            'error': str(self.error) if self.error else "Unknown error",
            'errorType': error_type_name(self.error) if self.error else "Error",
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'data': self.data,
            'error': str(self.error) if self.error else None,
            'stage': self.stage.value if self.stage else None,
        }
