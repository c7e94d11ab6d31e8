"""
Text extraction for card capture.

Turns the OCR result for one frame into at most one card number candidate
and at most one expiry candidate. Segments are searched coarsest first
(whole-frame transcript, then blocks, lines, elements) so a clean match is
usually found early and the walk can stop.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Union

from .cardnumber import looks_like_card_number, sanitize


# ---------------------------------------------------------------------------
# Recognized text tree
# ---------------------------------------------------------------------------


@dataclass
class TextElement:
    """Single recognized token."""

    text: str = ""


@dataclass
class TextLine:
    """Line of recognized text."""

    text: str = ""
    elements: List[TextElement] = field(default_factory=list)


@dataclass
class TextBlock:
    """Block (paragraph) of recognized text."""

    text: str = ""
    lines: List[TextLine] = field(default_factory=list)


@dataclass
class RecognizedText:
    """OCR result for one frame, as a tree of text segments."""

    text: str = ""
    blocks: List[TextBlock] = field(default_factory=list)

    def segments(self) -> List[str]:
        """Flatten the tree into non-empty segments, most aggregated first."""
        segments = []
        if self.text:
            segments.append(self.text)
        for block in self.blocks:
            if block.text:
                segments.append(block.text)
            for line in block.lines:
                if line.text:
                    segments.append(line.text)
                for element in line.elements:
                    if element.text:
                        segments.append(element.text)
        return segments


OCRInput = Union[RecognizedText, str, Iterable[str], None]


@dataclass
class ExtractedCardData:
    """Card fields found in one frame."""

    number: Optional[str] = None  # 15 or 16 digits, validated
    expiry: Optional[str] = None  # "MM/YY"

    @property
    def is_empty(self) -> bool:
        return self.number is None and self.expiry is None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

# Consecutive 15-16 digit chunks of the sanitized segment
CARD_NUMBER_RUN = re.compile(r"\d{15,16}", re.ASCII)

# Month 1-12 (optionally zero padded), slash, 4 or 2 digit year
EXPIRY_PATTERN = re.compile(
    r"(?<!\d)(1[0-2]|0?[1-9])\s*/\s*(\d{4}|\d{2})(?!\d)",
    re.IGNORECASE | re.ASCII,
)


def iter_segments(result: OCRInput) -> Iterator[str]:
    """Yield the non-empty segments of any supported OCR result shape, in order."""
    if result is None:
        return
    if isinstance(result, RecognizedText):
        yield from result.segments()
    elif isinstance(result, str):
        if result:
            yield result
    else:
        for segment in result:
            if segment:
                yield segment


def collect_segments(result: OCRInput) -> List[str]:
    return list(iter_segments(result))


def find_card_number(segment: str) -> Optional[str]:
    """
    Find the first plausible card number in a text segment.

    The segment is reduced to its digits and scanned for 15-16 digit runs;
    the first run passing :func:`looks_like_card_number` wins. Runs failing
    validation are never returned as a best guess.

    Args:
        segment: Raw OCR text

    Returns:
        Digit string, or None if no run validates
    """
    digits = sanitize(segment)
    if not digits:
        return None

    for match in CARD_NUMBER_RUN.finditer(digits):
        if looks_like_card_number(match.group()):
            return match.group()

    return None


def find_expiry(segment: str) -> Optional[str]:
    """Find the first ``MM/YY`` or ``MM/YYYY`` date in a segment, as ``MM/YY``."""
    if not segment:
        return None

    match = EXPIRY_PATTERN.search(segment)
    if match is None:
        return None

    month, year = match.groups()
    return f"{month.zfill(2)}/{year[-2:]}"


def extract_card_data(result: OCRInput) -> ExtractedCardData:
    """
    Extract a card number and expiry from one frame's OCR result.

    Fields are searched independently; the walk over segments stops as soon
    as both have been found.
    """
    data = ExtractedCardData()

    for segment in iter_segments(result):
        if data.number is None:
            data.number = find_card_number(segment)
        if data.expiry is None:
            data.expiry = find_expiry(segment)
        if data.number is not None and data.expiry is not None:
            break

    return data
