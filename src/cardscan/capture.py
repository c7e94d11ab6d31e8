"""Camera capture and text recognition capabilities.

The scheduler only depends on the two protocols below. The concrete
adapters wrap OpenCV (frame grabbing) and EasyOCR (recognition); blocking
calls run in the event loop's default executor.

Classes:
    PermissionState    - Camera permission tri-state
    CapturedFrame      - One captured image, in memory and/or on disk
    FrameSource        - Protocol: permission + capture()
    TextRecognizer     - Protocol: available + recognize()
    OpenCVFrameSource  - cv2.VideoCapture-backed frame source
    EasyOCRRecognizer  - easyocr.Reader-backed recognizer
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from importlib.util import find_spec
from pathlib import Path
from typing import List, NamedTuple, Optional, Protocol, Sequence, Union

import cv2
import numpy as np

from .errors import CaptureFailure, DependencyUnavailable
from .extraction import RecognizedText, TextBlock, TextElement, TextLine

log = logging.getLogger(__name__)


class PermissionState(Enum):
    UNDETERMINED = "undetermined"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass
class CapturedFrame:
    """A captured image, addressable by path when it was written to disk."""

    image: Optional[np.ndarray] = None
    path: Optional[str] = None
    captured_at: float = field(default_factory=time.time)

    def load(self) -> np.ndarray:
        """Return the image array, reading it from *path* if needed."""
        if self.image is not None:
            return self.image
        if self.path:
            image = cv2.imread(self.path)
            if image is None:
                raise CaptureFailure(f"Cannot read captured frame: {self.path}")
            return image
        raise CaptureFailure("Captured frame has no image data")


class FrameSource(Protocol):
    permission: PermissionState

    async def request_permission(self) -> PermissionState:
        ...

    async def capture(self) -> CapturedFrame:
        ...

    def close(self) -> None:
        ...


class TextRecognizer(Protocol):
    @property
    def available(self) -> bool:
        ...

    async def recognize(self, frame: CapturedFrame) -> RecognizedText:
        ...


# ---------------------------------------------------------------------------
# OpenCV frame source
# ---------------------------------------------------------------------------


class OpenCVFrameSource:
    """Grabs frames from a camera (or video file) with ``cv2.VideoCapture``.

    Permission is granted when the device opens. Reads are blocking and run
    in the default executor.

    Args:
        device: Camera index or video path/URL.
        snapshot_dir: If set, every frame is also written there as JPEG.
        jpeg_quality: JPEG quality for snapshots (0-100).
    """

    def __init__(
        self,
        device: Union[int, str] = 0,
        snapshot_dir: Optional[str] = None,
        jpeg_quality: int = 50,
    ):
        self.device = device
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir else None
        self.jpeg_quality = jpeg_quality
        self.permission = PermissionState.UNDETERMINED
        self._cap: Optional[cv2.VideoCapture] = None
        self._frame_count = 0

    async def request_permission(self) -> PermissionState:
        loop = asyncio.get_running_loop()
        self.permission = await loop.run_in_executor(None, self._open)
        return self.permission

    def _open(self) -> PermissionState:
        if self._cap is not None:
            return PermissionState.GRANTED
        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            cap.release()
            log.warning("Cannot open camera device %r", self.device)
            return PermissionState.DENIED
        self._cap = cap
        if self.snapshot_dir is not None:
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        return PermissionState.GRANTED

    async def capture(self) -> CapturedFrame:
        if self._cap is None:
            raise CaptureFailure("Camera is not open")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read)

    def _read(self) -> CapturedFrame:
        ret, frame = self._cap.read()
        if not ret or frame is None:
            raise CaptureFailure("Camera returned no frame")

        self._frame_count += 1
        path = None
        if self.snapshot_dir is not None:
            path = str(self.snapshot_dir / f"frame_{self._frame_count:06d}.jpg")
            if not cv2.imwrite(path, frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]):
                raise CaptureFailure(f"Cannot write frame: {path}")
        return CapturedFrame(image=frame, path=path)

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


# ---------------------------------------------------------------------------
# EasyOCR recognizer
# ---------------------------------------------------------------------------


def enhance_for_ocr(image: np.ndarray) -> np.ndarray:
    """Grayscale + CLAHE contrast enhancement for embossed/printed digits."""
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image
    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)

    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
    return clahe.apply(gray)


class _Box(NamedTuple):
    text: str
    left: float
    top: float
    bottom: float

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    @property
    def height(self) -> float:
        return self.bottom - self.top


def detections_to_text(
    detections: Sequence,
    line_tolerance: float = 0.5,
    block_gap: float = 1.5,
) -> RecognizedText:
    """
    Build a RecognizedText tree from EasyOCR ``readtext`` detections.

    Detections whose vertical centres are within ``line_tolerance`` box
    heights of a line's centre join that line (ordered left to right).
    Consecutive lines separated by at most ``block_gap`` line heights form
    a block.

    Args:
        detections: ``[(bbox, text, confidence), ...]`` with bbox as 4 points
        line_tolerance: Max centre offset for line grouping, in box heights
        block_gap: Max vertical gap for block grouping, in line heights

    Returns:
        RecognizedText with whole-frame, block, line and element text
    """
    boxes = []
    for det in detections:
        bbox, text = det[0], str(det[1]).strip()
        if not text:
            continue
        xs = [float(p[0]) for p in bbox]
        ys = [float(p[1]) for p in bbox]
        boxes.append(_Box(text, min(xs), min(ys), max(ys)))
    boxes.sort(key=lambda b: (b.center_y, b.left))

    lines: List[List[_Box]] = []
    for box in boxes:
        if lines:
            current = lines[-1]
            line_cy = sum(b.center_y for b in current) / len(current)
            height = max(max(b.height for b in current), box.height, 1.0)
            if abs(box.center_y - line_cy) <= line_tolerance * height:
                current.append(box)
                continue
        lines.append([box])

    grouped: List[List[List[_Box]]] = []
    prev_bottom = 0.0
    for line in lines:
        line.sort(key=lambda b: b.left)
        top = min(b.top for b in line)
        bottom = max(b.bottom for b in line)
        if grouped and top - prev_bottom <= block_gap * max(bottom - top, 1.0):
            grouped[-1].append(line)
        else:
            grouped.append([line])
        prev_bottom = bottom

    blocks = []
    for block_lines in grouped:
        text_lines = [
            TextLine(
                text=" ".join(b.text for b in line),
                elements=[TextElement(b.text) for b in line],
            )
            for line in block_lines
        ]
        blocks.append(TextBlock(text="\n".join(l.text for l in text_lines), lines=text_lines))

    return RecognizedText(text="\n".join(b.text for b in blocks), blocks=blocks)


class EasyOCRRecognizer:
    """Recognizes frame text with EasyOCR.

    The reader is built on first use (model load is slow). If ``easyocr``
    is not installed, :attr:`available` is False and :meth:`recognize`
    raises :class:`DependencyUnavailable`.

    Args:
        languages: EasyOCR language codes.
        gpu: Run on GPU.
        reader: Prebuilt reader (anything with a ``readtext`` method).
        enhance: Apply :func:`enhance_for_ocr` before recognition.
    """

    def __init__(
        self,
        languages: Sequence[str] = ("en",),
        gpu: bool = False,
        reader=None,
        enhance: bool = True,
    ):
        self.languages = list(languages)
        self.gpu = gpu
        self.enhance = enhance
        self._reader = reader

    @property
    def available(self) -> bool:
        return self._reader is not None or find_spec("easyocr") is not None

    def _load_reader(self):
        if self._reader is None:
            try:
                import easyocr
            except ImportError as exc:
                raise DependencyUnavailable("easyocr is not installed") from exc
            log.info("Loading EasyOCR reader (languages=%s, gpu=%s)", self.languages, self.gpu)
            self._reader = easyocr.Reader(self.languages, gpu=self.gpu, verbose=False)
        return self._reader

    async def recognize(self, frame: CapturedFrame) -> RecognizedText:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.recognize_sync, frame)

    def recognize_sync(self, frame: CapturedFrame) -> RecognizedText:
        """Blocking recognition of one frame."""
        reader = self._load_reader()
        image = frame.load()
        if self.enhance:
            image = enhance_for_ocr(image)
        detections = reader.readtext(image, paragraph=False)
        return detections_to_text(detections)
