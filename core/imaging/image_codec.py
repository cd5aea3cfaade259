# -*- coding: utf-8 -*-
"""
画像コーデック - DRM画像の復元に使う PBImage / PBCanvas 相当

拡張スクリプトはスクランブルされた画像を矩形単位で並べ直す。
Canvas は描画操作をキューに溜め、encode() の時点で元画像を一度だけデコードして
全操作を再生し、JPEG（またはPNG）として書き出す。
"""

import base64
import binascii
import io
import struct
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from PIL import Image, UnidentifiedImageError

from config.constants import JPEG_QUALITY

ImageData = Union[bytes, bytearray, memoryview, str]

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'


@dataclass(frozen=True)
class ImageDimensions:
    width: int
    height: int


def decode_header(data: bytes) -> ImageDimensions:
    """
    ヘッダーから画像サイズを取得（画像全体はデコードしない）

    JPEG: SOF0〜SOF3 マーカーを探し、marker+5 に高さ、marker+7 に幅（各2バイト BE）
    PNG: IHDR の 16バイト目に幅、20バイト目に高さ（各4バイト BE）
    それ以外・破損時は (0, 0)
    """
    try:
        if len(data) >= 4 and data[0] == 0xFF and data[1] == 0xD8:
            offset = 2
            while offset + 1 < len(data):
                if data[offset] != 0xFF:
                    offset += 1
                    continue
                marker = data[offset + 1]
                if 0xC0 <= marker <= 0xC3:
                    height, width = struct.unpack('>HH', bytes(data[offset + 5:offset + 9]))
                    return ImageDimensions(width, height)
                if marker == 0xFF:
                    # フィルバイト
                    offset += 1
                    continue
                length = struct.unpack('>H', bytes(data[offset + 2:offset + 4]))[0]
                offset += 2 + length
        elif bytes(data[:8]) == PNG_SIGNATURE and len(data) >= 24:
            width, height = struct.unpack('>II', bytes(data[16:24]))
            return ImageDimensions(width, height)
    except struct.error:
        pass
    return ImageDimensions(0, 0)


def to_bytes(data: ImageData) -> Optional[bytes]:
    """bytes / bytearray / memoryview / base64文字列 を bytes に変換"""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError):
            return None
    return None


@dataclass
class RasterImage:
    """デコード前の画像（サイズはヘッダーから取得済み）"""
    width: int
    height: int
    data: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def from_data(cls, data: ImageData,
                  logger: Callable[[str, str], None] = None) -> 'RasterImage':
        raw = to_bytes(data)
        if raw is None:
            if logger:
                logger(f"[ImageCodec] 未対応の画像データ型です: {type(data).__name__}", "warning")
            return cls(width=0, height=0, data=None)

        dims = decode_header(raw)
        if (dims.width == 0 or dims.height == 0) and logger:
            logger(f"[ImageCodec] 画像サイズを判定できません: {len(raw)} bytes", "warning")
        return cls(width=dims.width, height=dims.height, data=raw)


@dataclass(frozen=True)
class DrawOperation:
    sx: int
    sy: int
    sw: int
    sh: int
    dx: int
    dy: int


class Canvas:
    """
    描画キュー付きのキャンバス

    最初に描画された元画像を正とし、異なる元画像の描画は警告を出して無視する。
    """

    def __init__(self, width: int = 0, height: int = 0,
                 logger: Callable[[str, str], None] = None):
        self.width = width
        self.height = height
        self.logger = logger
        self._operations: List[DrawOperation] = []
        self._source: Optional[bytes] = None

    def log(self, message: str, level: str = "info"):
        if self.logger:
            self.logger(f"[ImageCodec] {message}", level)

    def set_size(self, width: int, height: int):
        self.width = int(width)
        self.height = int(height)

    @property
    def operations(self) -> List[DrawOperation]:
        return list(self._operations)

    def draw_image(self, image: RasterImage, sx, sy, sw, sh, dx, dy) -> bool:
        """
        描画操作をキューに追加

        Returns:
            キューに追加した場合 True
        """
        data = getattr(image, 'data', None)
        if not data:
            self.log("draw_image: 元画像のデータがありません", "warning")
            return False

        if self._source is None:
            self._source = data
        elif data is not self._source and data != self._source:
            self.log("draw_image: 2つ目の元画像は描画できません（最初の元画像のみ使用）", "warning")
            return False

        self._operations.append(DrawOperation(int(sx), int(sy), int(sw), int(sh), int(dx), int(dy)))
        return True

    def encode(self, mime_type: str = "image/jpeg", quality: int = JPEG_QUALITY) -> Optional[bytes]:
        """
        キューの描画操作を再生して画像を書き出す

        Returns:
            エンコード済みのバイト列。元画像をデコードできない場合は元画像のバイト列。
            描画操作もサイズも無い場合は None。
        """
        if not self._operations and (self.width <= 0 or self.height <= 0):
            return None

        surface = Image.new('RGB', (max(self.width, 1), max(self.height, 1)), (0, 0, 0))

        if self._operations and self._source:
            try:
                with Image.open(io.BytesIO(self._source)) as src:
                    src = src.convert('RGB')
                    for op in self._operations:
                        tile = src.crop((op.sx, op.sy, op.sx + op.sw, op.sy + op.sh))
                        surface.paste(tile, (op.dx, op.dy))
            except (UnidentifiedImageError, OSError, ValueError) as e:
                self.log(f"元画像のデコードに失敗しました。元データを返します: {e}", "warning")
                return self._source

        buffer = io.BytesIO()
        if mime_type == "image/png":
            surface.save(buffer, format='PNG')
        else:
            surface.save(buffer, format='JPEG', quality=quality, optimize=True)
        return buffer.getvalue()
