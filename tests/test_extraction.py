"""Tests for cardscan.extraction."""

import pytest

from cardscan.extraction import (
    ExtractedCardData,
    RecognizedText,
    TextBlock,
    TextElement,
    TextLine,
    collect_segments,
    extract_card_data,
    find_card_number,
    find_expiry,
)


@pytest.fixture
def frame_text():
    """Recognized text tree for a typical card frame."""
    return RecognizedText(
        text="BANK\n4111 1111 1111 4248\nVALID THRU 08/27\nJANE DOE",
        blocks=[
            TextBlock(
                text="BANK",
                lines=[TextLine("BANK", [TextElement("BANK")])],
            ),
            TextBlock(
                text="4111 1111 1111 4248\nVALID THRU 08/27",
                lines=[
                    TextLine(
                        "4111 1111 1111 4248",
                        [TextElement(t) for t in ("4111", "1111", "1111", "4248")],
                    ),
                    TextLine(
                        "VALID THRU 08/27",
                        [TextElement(t) for t in ("VALID", "THRU", "08/27")],
                    ),
                ],
            ),
        ],
    )


# ---------------------------------------------------------------------------
# Segment collection
# ---------------------------------------------------------------------------


class TestCollectSegments:
    def test_tree_order_coarsest_first(self, frame_text):
        segments = collect_segments(frame_text)

        assert segments[0] == frame_text.text
        assert segments[1] == "BANK"  # block
        assert segments[2] == "BANK"  # line
        assert segments[3] == "BANK"  # element
        assert segments[4] == "4111 1111 1111 4248\nVALID THRU 08/27"
        assert segments[5] == "4111 1111 1111 4248"
        assert segments[6:10] == ["4111", "1111", "1111", "4248"]
        assert segments[-1] == "08/27"

    def test_empty_segments_skipped(self):
        text = RecognizedText(
            text="",
            blocks=[TextBlock("", [TextLine("", [TextElement(""), TextElement("x")])])],
        )
        assert collect_segments(text) == ["x"]

    def test_plain_inputs(self):
        assert collect_segments(None) == []
        assert collect_segments("") == []
        assert collect_segments("abc") == ["abc"]
        assert collect_segments(["a", "", "b"]) == ["a", "b"]


# ---------------------------------------------------------------------------
# Number extraction
# ---------------------------------------------------------------------------


class TestFindCardNumber:
    def test_spaced_number_in_text(self):
        assert find_card_number("some text 4111 1111 1111 4248 more") == "4111111111114248"

    def test_amex(self):
        assert find_card_number("3782 822463 10005") == "378282246310005"

    def test_first_valid_run_wins(self):
        """An invalid leading run is skipped in favour of a later valid one."""
        segment = "REF 1234567890123456 CARD 4111111111111111"
        assert find_card_number(segment) == "4111111111111111"

    def test_bad_checksum_rejected(self):
        assert find_card_number("4111 1111 1111 1112") is None

    def test_wrong_prefix_rejected(self):
        assert find_card_number("9111 1111 1111 1111") is None
        assert find_card_number("9111 1111 1111 1110") is None

    def test_too_short(self):
        assert find_card_number("4111 1111 1111") is None

    def test_no_digits(self):
        assert find_card_number("VALID THRU") is None
        assert find_card_number("") is None


# ---------------------------------------------------------------------------
# Expiry extraction
# ---------------------------------------------------------------------------


class TestFindExpiry:
    @pytest.mark.parametrize(
        "segment,expected",
        [
            ("EXP 08/27", "08/27"),
            ("exp 05/31", "05/31"),
            ("VALID THRU 12 / 2029", "12/29"),
            ("08/2027", "08/27"),
            ("GOOD THRU 8/26", "08/26"),
            ("10/25 and 11/26", "10/25"),
        ],
    )
    def test_matches(self, segment, expected):
        assert find_expiry(segment) == expected

    @pytest.mark.parametrize("segment", ["13/27", "00/27", "08-27", "0827", "", "08/275"])
    def test_no_match(self, segment):
        assert find_expiry(segment) is None


# ---------------------------------------------------------------------------
# Full frame extraction
# ---------------------------------------------------------------------------


class TestExtractCardData:
    def test_segments_list(self):
        data = extract_card_data(["some text 4111 1111 1111 4248 more", "EXP 08/27"])

        assert data.number == "4111111111114248"
        assert data.expiry == "08/27"

    def test_tree(self, frame_text):
        data = extract_card_data(frame_text)

        assert data == ExtractedCardData("4111111111114248", "08/27")

    def test_number_only_in_element(self):
        text = RecognizedText(
            text="CARD",
            blocks=[TextBlock("x", [TextLine("y", [TextElement("4111111111111111")])])],
        )
        data = extract_card_data(text)

        assert data.number == "4111111111111111"
        assert data.expiry is None

    def test_stops_once_both_found(self):
        """Segments after the one completing both fields are never consumed."""
        consumed = []

        def segments():
            for s in ["4111 1111 1111 1111", "EXP 08/27", "never read"]:
                consumed.append(s)
                yield s

        data = extract_card_data(segments())

        assert data.number == "4111111111111111"
        assert consumed == ["4111 1111 1111 1111", "EXP 08/27"]

    def test_first_number_kept(self):
        data = extract_card_data(["4111111111111111", "5555555555554444"])
        assert data.number == "4111111111111111"

    def test_invalid_prefix_yields_nothing(self):
        data = extract_card_data(["9111 1111 1111 1111"])
        assert data.number is None
        assert data.is_empty

    def test_none(self):
        assert extract_card_data(None).is_empty
