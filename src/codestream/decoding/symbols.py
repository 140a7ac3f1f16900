"""
Symbol Decoders
===============

Barcode/QR symbol decoding over a luminance buffer.

This module provides the SymbolDecoder protocol and ZXingSymbolDecoder,
backed by zxing-cpp.

Decode Passes:
    1. normal polarity, local-average binarizer
    2. normal polarity, global-histogram binarizer   (try_harder)
    3. inverted polarity, same binarizers            (try_inverted)

The first pass that yields a valid symbol wins.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
import zxingcpp

from codestream.errors import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_FORMATS = ("Code128", "QRCode", "EAN13")


@dataclass(frozen=True, slots=True)
class SymbolResult:
    """One decoded symbol."""

    text: str
    raw: bytes
    format: str


class SymbolDecoder(Protocol):
    """Protocol for symbol decoding backends."""

    def decode(self, luminance: np.ndarray) -> Optional[SymbolResult]:
        """
        Decode the first symbol found in a luminance buffer.

        Args:
            luminance: Single-channel uint8 image, shape (H, W)

        Returns:
            SymbolResult, or None when nothing is recognized
        """
        ...


def parse_formats(names: Sequence[str]):
    """
    Resolve symbology names into a tuple of zxing-cpp formats.

    Raises:
        ConfigurationError: On an unknown name or an empty list
    """
    if not names:
        raise ConfigurationError("At least one barcode format is required")

    formats = []
    for name in names:
        fmt = getattr(zxingcpp.BarcodeFormat, name, None)
        if fmt is None:
            raise ConfigurationError(f"Unknown barcode format: {name}")
        formats.append(fmt)
    return tuple(formats)


class ZXingSymbolDecoder:
    """
    zxing-cpp decoder restricted to a fixed set of symbologies.

    Attributes:
        formats: Symbology names accepted
        try_rotate: Let zxing-cpp try rotated orientations
        try_harder: Add downscaling and a second binarizer pass
        try_inverted: Retry on the inverted buffer (light-on-dark codes)
    """

    def __init__(
        self,
        formats: Sequence[str] = DEFAULT_FORMATS,
        try_rotate: bool = True,
        try_harder: bool = True,
        try_inverted: bool = True,
    ) -> None:
        self.formats = tuple(formats)
        self.try_rotate = try_rotate
        self.try_harder = try_harder
        self.try_inverted = try_inverted

        self._formats = parse_formats(self.formats)
        self._binarizers: List = [zxingcpp.Binarizer.LocalAverage]
        if try_harder:
            self._binarizers.append(zxingcpp.Binarizer.GlobalHistogram)

        logger.info(
            f"ZXingSymbolDecoder initialized: formats={','.join(self.formats)}, "
            f"rotate={try_rotate}, harder={try_harder}, inverted={try_inverted}"
        )

    def _passes(self, luminance: np.ndarray) -> List[Tuple[np.ndarray, object]]:
        images = [luminance]
        if self.try_inverted:
            images.append(np.ascontiguousarray(255 - luminance))
        return [(image, binarizer) for image in images for binarizer in self._binarizers]

    def decode(self, luminance: np.ndarray) -> Optional[SymbolResult]:
        if luminance.ndim != 2 or luminance.dtype != np.uint8:
            raise ValueError(
                f"Expected a 2-D uint8 luminance buffer, got {luminance.shape} {luminance.dtype}"
            )
        if luminance.size == 0:
            return None

        luminance = np.ascontiguousarray(luminance)
        for image, binarizer in self._passes(luminance):
            results = zxingcpp.read_barcodes(
                image,
                formats=self._formats,
                try_rotate=self.try_rotate,
                try_downscale=self.try_harder,
                binarizer=binarizer,
            )
            for result in results:
                if not result.valid:
                    continue
                raw = getattr(result, "bytes", None) or result.text.encode("utf-8")
                return SymbolResult(
                    text=result.text,
                    raw=bytes(raw),
                    format=result.format.name,
                )
        return None
