"""Hand-off of a confirmed detection to the card-entry form.

The scan side encodes the detection as URL query parameters
(``prefillNumber``, ``prefillExpiry``, ``returnTo``); the form side parses
them back into display-ready values.
"""

import random
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union
from urllib.parse import parse_qs, urlencode

from .cardnumber import (
    CardBrand,
    detect_brand,
    format_grouped,
    limit_for_brand,
    normalize_expiry,
    sanitize,
)
from .stabilizer import Detection

CARD_VARIANTS = ("midnight", "sunset", "jade")


@dataclass(frozen=True)
class CardPrefill:
    """Form-ready values for a new card."""

    number: str  # Grouped for display, limited to the brand's length
    expiry: Optional[str]  # "MM/YY"
    brand: CardBrand


def _prefill_from(number: Optional[str], expiry: Optional[str]) -> CardPrefill:
    digits = sanitize(number)
    brand = detect_brand(digits)
    limited = limit_for_brand(digits, brand)
    return CardPrefill(
        number=format_grouped(limited, brand),
        expiry=normalize_expiry(expiry),
        brand=brand,
    )


def build_prefill(detection: Detection) -> CardPrefill:
    return _prefill_from(detection.number, detection.expiry)


def prefill_query(detection: Detection, return_to: Optional[str] = None) -> str:
    """Encode a detection as a card-editor query string."""
    params = [("prefillNumber", detection.number)]
    if return_to:
        params.append(("returnTo", return_to))
    if detection.expiry:
        params.append(("prefillExpiry", detection.expiry))
    return urlencode(params)


def parse_prefill_query(query: Union[str, Mapping[str, str]]) -> CardPrefill:
    """Parse a card-editor query string (or mapping) into prefill values.

    Missing or malformed values degrade to an empty number / no expiry.
    """
    if isinstance(query, str):
        parsed = parse_qs(query.lstrip("?"))
        params = {k: v[0] for k, v in parsed.items() if v}
    else:
        params = dict(query)
    return _prefill_from(params.get("prefillNumber"), params.get("prefillExpiry"))


class CardVariantPicker:
    """Picks a card design variant, avoiding the previous pick.

    Owned by the caller for the lifetime of an editing session; nothing is
    remembered across pickers.

    Args:
        variants: Available variant names.
        rng: Random source (``random.Random`` compatible).
    """

    def __init__(
        self,
        variants: Sequence[str] = CARD_VARIANTS,
        rng: Optional[random.Random] = None,
    ):
        if not variants:
            raise ValueError("at least one variant is required")
        self.variants = list(variants)
        self.rng = rng or random.Random()
        self.last: Optional[str] = None

    def pick(self) -> str:
        pool = [v for v in self.variants if v != self.last] or self.variants
        self.last = self.rng.choice(pool)
        return self.last
