"""Tests for the color catalog."""

import pytest

from placedefender.colors import (
    CLASSIC_PALETTE,
    EXTENDED_PALETTE,
    Color,
    ColorCatalog,
    get_palette,
    rgb_to_hex,
)


class TestLookupById:

    def test_known_id(self):
        assert CLASSIC_PALETTE.by_id(2).name == "red"

    def test_unknown_id(self):
        assert CLASSIC_PALETTE.by_id(0) is None
        assert CLASSIC_PALETTE.by_id(99) is None

    def test_id_zero_is_valid_in_extended_palette(self):
        color = EXTENDED_PALETTE.by_id(0)
        assert color is not None
        assert color.name == "burgundy"


class TestClosest:

    def test_exact_match(self):
        assert CLASSIC_PALETTE.closest(255, 69, 0).id == 2

    def test_within_tolerance(self):
        # #000000 is sometimes read back as #010100
        assert CLASSIC_PALETTE.closest(1, 1, 0).id == 27
        assert CLASSIC_PALETTE.closest(250, 69, 0).id == 2

    def test_outside_tolerance(self):
        assert CLASSIC_PALETTE.closest(249, 69, 0) is None

    def test_match_on_index_zero_is_not_mistaken_for_missing(self):
        color = EXTENDED_PALETTE.closest(0x6D, 0x00, 0x1A)
        assert color is not None
        assert color.id == 0

    def test_ties_go_to_first_entry(self):
        catalog = ColorCatalog([
            Color(5, "first", (10, 10, 10)),
            Color(6, "second", (12, 10, 10)),
        ])
        assert catalog.closest(11, 10, 10).id == 5

        reversed_catalog = ColorCatalog(reversed(catalog.colors))
        assert reversed_catalog.closest(11, 10, 10).id == 6

    def test_accepts_numpy_like_channels(self):
        import numpy as np

        r, g, b = np.array([255, 69, 0], dtype=np.uint8)
        assert CLASSIC_PALETTE.closest(r, g, b).id == 2


class TestCatalog:

    def test_palette_sizes(self):
        assert len(CLASSIC_PALETTE) == 24
        assert len(EXTENDED_PALETTE) == 32

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            ColorCatalog([Color(1, "a", (0, 0, 0)), Color(1, "b", (1, 1, 1))])

    def test_get_palette(self):
        assert get_palette("extended") is EXTENDED_PALETTE
        with pytest.raises(KeyError):
            get_palette("nope")

    def test_rgb_to_hex(self):
        assert rgb_to_hex((255, 69, 0)) == "#FF4500"
        assert rgb_to_hex((1, 1, 0, 255)) == "#010100"
