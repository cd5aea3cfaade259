# -*- coding: utf-8 -*-
"""
Core imaging layer - DRM画像の復元
"""

from .image_codec import Canvas, DrawOperation, ImageDimensions, RasterImage, decode_header

__all__ = [
    'Canvas',
    'DrawOperation',
    'ImageDimensions',
    'RasterImage',
    'decode_header',
]
