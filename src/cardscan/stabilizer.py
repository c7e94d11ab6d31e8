"""
Multi-frame stabilization of extracted card fields.

A field is only confirmed once the same value has been read on
``threshold`` consecutive non-blank frames. A blank frame clears an
unconfirmed field entirely, so a one-off misread can never linger and
collect hits across interruptions.

Classes:
    StabilizationBuffer - Current candidate and its consecutive hit count
    FieldStabilizer     - Confirms a single field, freezes it once confirmed
    CardStabilizer      - Number + expiry stabilizers fed from one frame
    Detection           - Confirmed card number with optional expiry
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .cardnumber import CardBrand, detect_brand, format_grouped
from .extraction import ExtractedCardData

DEFAULT_THRESHOLD = 2


@dataclass(frozen=True)
class StabilizationBuffer:
    """Candidate value and how many consecutive frames agreed on it."""

    value: str
    hits: int = 1


@dataclass(frozen=True)
class Detection:
    """Confirmed card number, plus the expiry if it was confirmed too."""

    number: str
    expiry: Optional[str] = None

    @property
    def brand(self) -> CardBrand:
        return detect_brand(self.number)

    @property
    def formatted(self) -> str:
        return format_grouped(self.number, self.brand)


def observe(
    buffer: Optional[StabilizationBuffer],
    candidate: Optional[str],
    threshold: int = DEFAULT_THRESHOLD,
) -> Tuple[Optional[StabilizationBuffer], bool]:
    """
    Apply one frame's reading to a buffer.

    Args:
        buffer: Current buffer (None if nothing is forming)
        candidate: Value read this frame (None/"" if nothing was read)
        threshold: Hits required for confirmation

    Returns:
        (new_buffer, is_confirmed) tuple. The input buffer is not modified.
    """
    if not candidate:
        return None, False

    if buffer is not None and buffer.value == candidate:
        updated = StabilizationBuffer(candidate, buffer.hits + 1)
    else:
        updated = StabilizationBuffer(candidate, 1)

    return updated, updated.hits >= threshold


class FieldStabilizer:
    """Confirms one field after ``threshold`` consecutive identical reads.

    Once confirmed the value is frozen: further updates are ignored until
    :meth:`reset`.

    Args:
        threshold: Consecutive identical reads required (>= 1).
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self.threshold = threshold
        self.buffer: Optional[StabilizationBuffer] = None
        self.confirmed: Optional[str] = None

    @property
    def hits(self) -> int:
        return self.buffer.hits if self.buffer else 0

    @property
    def progress(self) -> float:
        """Fraction of the threshold reached (0.0-1.0)."""
        return min(self.hits, self.threshold) / self.threshold

    def update(self, candidate: Optional[str]) -> bool:
        """Feed one frame's reading. Returns True once the field is confirmed."""
        if self.confirmed is not None:
            return True

        self.buffer, is_confirmed = observe(self.buffer, candidate, self.threshold)
        if is_confirmed:
            self.confirmed = self.buffer.value
        return is_confirmed

    def reset(self) -> None:
        self.buffer = None
        self.confirmed = None


class CardStabilizer:
    """Stabilizes the card number and expiry independently.

    Only the number gates detection; the expiry is best effort and may
    never confirm.
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD):
        self.number = FieldStabilizer(threshold)
        self.expiry = FieldStabilizer(threshold)

    @property
    def threshold(self) -> int:
        return self.number.threshold

    @property
    def progress(self) -> float:
        """Stability progress of the number field (0.0-1.0)."""
        return self.number.progress

    @property
    def detection(self) -> Optional[Detection]:
        if self.number.confirmed is None:
            return None
        return Detection(number=self.number.confirmed, expiry=self.expiry.confirmed)

    def update(self, data: ExtractedCardData) -> bool:
        """Feed one frame's extracted fields. Returns True if the number is confirmed."""
        number_confirmed = self.number.update(data.number)
        self.expiry.update(data.expiry)
        return number_confirmed

    def reset(self) -> None:
        self.number.reset()
        self.expiry.reset()
