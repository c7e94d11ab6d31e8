"""Tests for cardscan.capture adapters."""

import asyncio
import sys

import cv2
import numpy as np
import pytest

from cardscan import capture
from cardscan.capture import (
    CapturedFrame,
    EasyOCRRecognizer,
    OpenCVFrameSource,
    PermissionState,
    detections_to_text,
    enhance_for_ocr,
)
from cardscan.errors import CaptureFailure, DependencyUnavailable
from cardscan.extraction import extract_card_data


def box(x1, y1, x2, y2):
    """EasyOCR-style 4-point bounding box."""
    return [[x1, y1], [x2, y1], [x2, y2], [x1, y2]]


@pytest.fixture
def card_detections():
    """Detections for a card front, deliberately out of reading order."""
    return [
        (box(10, 200, 80, 220), "JANE", 0.9),
        (box(190, 100, 240, 120), "4248", 0.95),
        (box(10, 100, 60, 120), "4111", 0.95),
        (box(70, 102, 120, 122), "1111", 0.92),
        (box(130, 99, 180, 119), "1111", 0.93),
        (box(10, 135, 60, 155), "EXP", 0.8),
        (box(70, 135, 130, 155), "08/27", 0.85),
        (box(90, 200, 150, 220), "DOE", 0.9),
        (box(0, 0, 10, 10), "  ", 0.1),
    ]


class FakeReader:
    """Stands in for easyocr.Reader."""

    def __init__(self, detections):
        self.detections = detections
        self.images = []

    def readtext(self, image, paragraph=False):
        self.images.append(image)
        return self.detections


class FakeVideoCapture:
    def __init__(self, device, opened=True, frames=1):
        self.device = device
        self.opened = opened
        self.frames = frames
        self.released = False

    def isOpened(self):
        return self.opened

    def read(self):
        if self.frames <= 0:
            return False, None
        self.frames -= 1
        return True, np.full((48, 64, 3), 127, dtype=np.uint8)

    def release(self):
        self.released = True


# ---------------------------------------------------------------------------
# CapturedFrame
# ---------------------------------------------------------------------------


class TestCapturedFrame:
    def test_in_memory_image(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        assert CapturedFrame(image=image).load() is image

    def test_reads_from_path(self, tmp_path):
        path = tmp_path / "frame.png"
        cv2.imwrite(str(path), np.full((12, 16, 3), 200, dtype=np.uint8))

        image = CapturedFrame(path=str(path)).load()

        assert image.shape == (12, 16, 3)

    def test_missing_file(self, tmp_path):
        with pytest.raises(CaptureFailure):
            CapturedFrame(path=str(tmp_path / "missing.jpg")).load()

    def test_no_data(self):
        with pytest.raises(CaptureFailure):
            CapturedFrame().load()


# ---------------------------------------------------------------------------
# Preprocessing and text tree building
# ---------------------------------------------------------------------------


class TestEnhanceForOCR:
    def test_bgr_to_gray(self):
        image = np.random.randint(0, 255, (40, 60, 3), dtype=np.uint8)
        enhanced = enhance_for_ocr(image)

        assert enhanced.shape == (40, 60)
        assert enhanced.dtype == np.uint8

    def test_float_gray_normalized(self):
        image = np.linspace(0.0, 1.0, 40 * 60, dtype=np.float32).reshape(40, 60)
        enhanced = enhance_for_ocr(image)

        assert enhanced.dtype == np.uint8
        assert enhanced.shape == (40, 60)


class TestDetectionsToText:
    def test_lines_and_blocks(self, card_detections):
        text = detections_to_text(card_detections)

        assert len(text.blocks) == 2
        number_block, name_block = text.blocks
        assert [line.text for line in number_block.lines] == [
            "4111 1111 1111 4248",
            "EXP 08/27",
        ]
        assert [e.text for e in number_block.lines[0].elements] == [
            "4111",
            "1111",
            "1111",
            "4248",
        ]
        assert name_block.text == "JANE DOE"
        assert text.text == "4111 1111 1111 4248\nEXP 08/27\nJANE DOE"

    def test_feeds_extraction(self, card_detections):
        data = extract_card_data(detections_to_text(card_detections))

        assert data.number == "4111111111114248"
        assert data.expiry == "08/27"

    def test_empty(self):
        text = detections_to_text([])
        assert text.text == ""
        assert text.blocks == []


# ---------------------------------------------------------------------------
# EasyOCRRecognizer
# ---------------------------------------------------------------------------


class TestEasyOCRRecognizer:
    def test_recognize_with_reader(self, card_detections):
        reader = FakeReader(card_detections)
        recognizer = EasyOCRRecognizer(reader=reader)
        frame = CapturedFrame(image=np.zeros((120, 240, 3), dtype=np.uint8))

        text = asyncio.run(recognizer.recognize(frame))

        assert recognizer.available
        assert text.blocks[0].lines[0].text == "4111 1111 1111 4248"
        # Enhanced frames are single channel
        assert reader.images[0].ndim == 2

    def test_enhance_disabled(self, card_detections):
        reader = FakeReader(card_detections)
        recognizer = EasyOCRRecognizer(reader=reader, enhance=False)
        image = np.zeros((120, 240, 3), dtype=np.uint8)

        recognizer.recognize_sync(CapturedFrame(image=image))

        assert reader.images[0] is image

    def test_missing_easyocr(self, monkeypatch):
        monkeypatch.setattr(capture, "find_spec", lambda name: None)
        monkeypatch.setitem(sys.modules, "easyocr", None)
        recognizer = EasyOCRRecognizer()

        assert recognizer.available is False
        with pytest.raises(DependencyUnavailable):
            recognizer.recognize_sync(CapturedFrame(image=np.zeros((4, 4, 3), dtype=np.uint8)))


# ---------------------------------------------------------------------------
# OpenCVFrameSource
# ---------------------------------------------------------------------------


class TestOpenCVFrameSource:
    def test_open_and_capture(self, monkeypatch):
        monkeypatch.setattr(capture.cv2, "VideoCapture", FakeVideoCapture)
        source = OpenCVFrameSource(device=0)

        async def scenario():
            permission = await source.request_permission()
            frame = await source.capture()
            return permission, frame

        permission, frame = asyncio.run(scenario())

        assert permission is PermissionState.GRANTED
        assert source.permission is PermissionState.GRANTED
        assert frame.image.shape == (48, 64, 3)
        assert frame.path is None
        source.close()

    def test_snapshot_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr(capture.cv2, "VideoCapture", FakeVideoCapture)
        source = OpenCVFrameSource(device=0, snapshot_dir=str(tmp_path / "frames"))

        async def scenario():
            await source.request_permission()
            return await source.capture()

        frame = asyncio.run(scenario())

        assert frame.path is not None
        assert (tmp_path / "frames" / "frame_000001.jpg").is_file()
        source.close()

    def test_unopened_device_denied(self, monkeypatch):
        monkeypatch.setattr(
            capture.cv2, "VideoCapture", lambda device: FakeVideoCapture(device, opened=False)
        )
        source = OpenCVFrameSource(device=3)

        permission = asyncio.run(source.request_permission())

        assert permission is PermissionState.DENIED

    def test_capture_before_open(self):
        source = OpenCVFrameSource(device=0)
        with pytest.raises(CaptureFailure):
            asyncio.run(source.capture())

    def test_read_failure(self, monkeypatch):
        monkeypatch.setattr(
            capture.cv2, "VideoCapture", lambda device: FakeVideoCapture(device, frames=0)
        )
        source = OpenCVFrameSource(device=0)

        async def scenario():
            await source.request_permission()
            await source.capture()

        with pytest.raises(CaptureFailure):
            asyncio.run(scenario())
        source.close()
