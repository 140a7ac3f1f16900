"""
Decoding Module
===============

On-demand symbol decoding of a selected region.

Components:
    - to_luminance: fixed-point BGR -> 8-bit gray conversion
    - SymbolDecoder / ZXingSymbolDecoder: symbol decoding backend
    - RegionDecoder: crop + convert + decode for one detection
"""

from codestream.decoding.symbols import (
    DEFAULT_FORMATS,
    SymbolDecoder,
    SymbolResult,
    ZXingSymbolDecoder,
    parse_formats,
)
from codestream.decoding.region import (
    DecoderMetrics,
    RegionDecoder,
    crop,
    to_luminance,
)

__all__ = [
    "DEFAULT_FORMATS",
    "SymbolDecoder",
    "SymbolResult",
    "ZXingSymbolDecoder",
    "parse_formats",
    "DecoderMetrics",
    "RegionDecoder",
    "crop",
    "to_luminance",
]
