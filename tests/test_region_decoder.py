"""
Region Decoder Tests
====================

Luminance conversion, frame selection and symbol decoding of a selected
region.
"""

import numpy as np
import pytest
import zxingcpp

from codestream.decoding import (
    RegionDecoder,
    SymbolResult,
    ZXingSymbolDecoder,
    crop,
    parse_formats,
    to_luminance,
)
from codestream.errors import ConfigurationError
from codestream.events import Broadcaster
from codestream.models import Detection, DetectionBatch, Rect
from codestream.transport import LatestFrameTracker


QR_TEXT = "hello-codestream"
QR_REGION = Rect(x=30, y=10, width=200, height=200)
CODE128_TEXT = "1234"
CODE128_REGION = Rect(x=50, y=50, width=100, height=40)


def _detection(bounds: Rect) -> Detection:
    return Detection(label="qrcode", bounds=bounds, confidence=1.0)


class RaisingDecoder:
    def decode(self, luminance):
        raise RuntimeError("decoder crashed")


class RecordingDecoder:
    def __init__(self):
        self.shapes = []

    def decode(self, luminance):
        self.shapes.append(luminance.shape)
        return SymbolResult(text="42", raw=b"42", format="Code128")


@pytest.fixture
def qr_frame(qr_image_factory, decoded_frame_factory):
    return decoded_frame_factory(qr_image_factory(QR_TEXT, scale=4, offset=(40, 60)))


@pytest.fixture
def blank_frame(decoded_frame_factory):
    return decoded_frame_factory(np.full((480, 640, 3), 255, dtype=np.uint8))


def make_code128_image(text: str, region: Rect, bar_height: int = 30) -> np.ndarray:
    """White BGR canvas with a one-pixel-module Code128 symbol centred in `region`."""
    pixels = np.asarray(zxingcpp.create_barcode(text, zxingcpp.BarcodeFormat.Code128).to_image(scale=1))
    pixels = pixels.reshape(pixels.shape[0], -1)
    row = pixels[pixels.shape[0] // 2]
    dark = np.flatnonzero(row < 128)
    bars = row[dark[0]:dark[-1] + 1]

    # 10-module quiet zone on both sides must stay inside the region
    assert bars.size + 20 <= region.width
    assert bar_height < region.height

    image = np.full((480, 640, 3), 255, dtype=np.uint8)
    left = region.x + (region.width - bars.size) // 2
    top = region.y + (region.height - bar_height) // 2
    image[top:top + bar_height, left:left + bars.size] = np.tile(bars, (bar_height, 1))[..., None]
    return image


def _tracker_with(frame) -> LatestFrameTracker:
    frames = Broadcaster("frames")
    tracker = LatestFrameTracker()
    tracker.attach(frames)
    frames.publish(frame)
    return tracker


class TestLuminance:
    """Tests for the fixed-point gray conversion."""

    def test_primary_colours(self):
        image = np.array([[[0, 0, 255], [0, 255, 0], [255, 0, 0], [255, 255, 255]]], dtype=np.uint8)

        gray = to_luminance(image)

        assert gray.dtype == np.uint8
        assert gray.tolist() == [[76, 149, 28, 255]]

    def test_black_stays_black(self):
        assert to_luminance(np.zeros((4, 4, 3), dtype=np.uint8)).max() == 0

    def test_bgra_ignores_alpha(self):
        bgra = np.zeros((2, 2, 4), dtype=np.uint8)
        bgra[..., 3] = 255
        assert to_luminance(bgra).max() == 0

    def test_gray_passthrough(self):
        gray = np.arange(16, dtype=np.uint8).reshape(4, 4)
        assert np.array_equal(to_luminance(gray), gray)

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            to_luminance(np.zeros((2, 2, 2), dtype=np.uint8))

    def test_crop(self, bgr_image):
        region = crop(bgr_image, Rect(x=10, y=20, width=30, height=40))
        assert region.shape == (40, 30, 3)


class TestSymbolDecoder:
    """Tests for the zxing-cpp backend."""

    def test_parse_formats(self):
        formats = parse_formats(["QRCode", "Code128"])

        assert formats == (zxingcpp.BarcodeFormat.QRCode, zxingcpp.BarcodeFormat.Code128)

    def test_format_tuple_restricts_symbologies(self, qr_image_factory):
        gray = to_luminance(qr_image_factory(QR_TEXT))

        assert ZXingSymbolDecoder(formats=("Code128", "EAN13")).decode(gray) is None
        assert ZXingSymbolDecoder(formats=("Code128", "QRCode")).decode(gray).text == QR_TEXT

    def test_unknown_format(self):
        with pytest.raises(ConfigurationError):
            parse_formats(["NotASymbology"])

    def test_empty_formats(self):
        with pytest.raises(ConfigurationError):
            parse_formats([])

    def test_decodes_qr_luminance(self, qr_image_factory):
        gray = to_luminance(qr_image_factory(QR_TEXT))

        result = ZXingSymbolDecoder().decode(gray)

        assert result is not None
        assert result.text == QR_TEXT
        assert result.format == "QRCode"
        assert result.raw == QR_TEXT.encode("utf-8")

    def test_blank_buffer(self):
        assert ZXingSymbolDecoder().decode(np.full((100, 100), 255, dtype=np.uint8)) is None

    def test_rejects_colour_buffer(self):
        with pytest.raises(ValueError):
            ZXingSymbolDecoder().decode(np.zeros((10, 10, 3), dtype=np.uint8))


class TestRegionDecoder:
    """Tests for decoding a selected detection."""

    def test_decodes_qr_in_region(self, qr_frame):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(qr_frame))

        result = decoder.decode(_detection(QR_REGION))

        assert result.found
        assert result.text == QR_TEXT
        assert result.format == "QRCode"
        assert result.frame_id == qr_frame.frame_id
        assert decoder.metrics.found == 1

    def test_decodes_light_on_dark_qr(self, qr_image_factory, decoded_frame_factory):
        frame = decoded_frame_factory(255 - qr_image_factory(QR_TEXT, scale=4, offset=(40, 60)))
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(frame))

        result = decoder.decode(_detection(QR_REGION))

        assert result.found
        assert result.text == QR_TEXT

    def test_decodes_code128_in_region(self, decoded_frame_factory):
        frame = decoded_frame_factory(make_code128_image(CODE128_TEXT, CODE128_REGION))
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(frame))

        result = decoder.decode(_detection(CODE128_REGION))

        assert result.found
        assert result.text == CODE128_TEXT
        assert result.format == "Code128"
        assert result.frame_id == frame.frame_id

    def test_code128_region_on_blank_frame(self, blank_frame):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(blank_frame))

        result = decoder.decode(_detection(CODE128_REGION))

        assert not result.found
        assert result.frame_id == blank_frame.frame_id

    def test_blank_region_not_found(self, blank_frame):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(blank_frame))

        result = decoder.decode(_detection(QR_REGION))

        assert not result.found
        assert result.text is None
        assert result.frame_id == blank_frame.frame_id
        assert decoder.metrics.not_found == 1

    def test_no_frame_yet(self):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=LatestFrameTracker())

        result = decoder.decode(_detection(QR_REGION))

        assert not result.found
        assert result.frame_id is None

    def test_region_outside_frame(self, blank_frame):
        decoder = RegionDecoder(RecordingDecoder(), tracker=_tracker_with(blank_frame))

        result = decoder.decode(_detection(Rect(x=600, y=400, width=100, height=100)))

        assert not result.found
        assert decoder.symbol_decoder.shapes == []

    def test_decoder_crash_is_not_found(self, blank_frame):
        decoder = RegionDecoder(RaisingDecoder(), tracker=_tracker_with(blank_frame))

        result = decoder.decode(_detection(QR_REGION))

        assert not result.found
        assert decoder.metrics.errors == 1

    def test_passes_cropped_luminance(self, blank_frame):
        symbol_decoder = RecordingDecoder()
        decoder = RegionDecoder(symbol_decoder, tracker=_tracker_with(blank_frame))

        result = decoder.decode(_detection(Rect(x=10, y=20, width=64, height=32)))

        assert symbol_decoder.shapes == [(32, 64)]
        assert result.found
        assert result.raw == b"42"

    def test_uses_latest_frame_by_default(self, qr_frame, blank_frame):
        batch = DetectionBatch(frame_id=qr_frame.frame_id, detections=(_detection(QR_REGION),), frame=qr_frame)
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(blank_frame))

        result = decoder.decode(batch.detections[0], batch)

        assert not result.found
        assert result.frame_id == blank_frame.frame_id

    def test_snapshot_mode_uses_detection_frame(self, qr_frame, blank_frame):
        batch = DetectionBatch(frame_id=qr_frame.frame_id, detections=(_detection(QR_REGION),), frame=qr_frame)
        decoder = RegionDecoder(
            ZXingSymbolDecoder(),
            tracker=_tracker_with(blank_frame),
            use_detection_frame=True,
        )

        result = decoder.decode(batch.detections[0], batch)

        assert result.found
        assert result.frame_id == qr_frame.frame_id

    def test_decode_bounds(self, qr_frame):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(qr_frame))
        assert decoder.decode_bounds(QR_REGION).text == QR_TEXT

    async def test_decode_async(self, qr_frame):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(qr_frame))
        result = await decoder.decode_async(_detection(QR_REGION))
        assert result.found

    def test_result_json_encodes_raw_bytes(self, qr_frame):
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker=_tracker_with(qr_frame))

        payload = decoder.decode(_detection(QR_REGION)).model_dump(mode="json")

        assert payload["found"] is True
        assert isinstance(payload["raw"], str)
