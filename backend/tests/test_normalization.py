"""Tests for name/strength/size normalization and name similarity."""

import pytest
from bottle_inventory.services.normalization import normalize_name, normalize_strength, normalize_size
from bottle_inventory.services.similarity import name_similarity


class TestNormalizeName:
    """Test product name normalization."""

    def test_lowercases_and_trims(self):
        """Test case folding and trimming."""
        assert normalize_name("  Blue Razz  ") == "blue razz"

    def test_strips_trailing_size_suffix(self):
        """Test ' a-30ml' style disambiguation suffix is removed."""
        assert normalize_name("Blue Razz a-30ml") == "blue razz"
        assert normalize_name("Blue Razz B-60ML") == "blue razz"

    def test_strips_leading_size_suffix(self):
        """Test sheet names written as 'a-30mL Freeze'."""
        assert normalize_name("a-30mL Freeze") == "freeze"

    def test_removes_punctuation(self):
        """Test punctuation characters are dropped."""
        assert normalize_name("Mr. Freeze") == "mr freeze"
        assert normalize_name("Strawberry-Kiwi (Ice)") == "strawberrykiwi ice"

    def test_collapses_whitespace(self):
        """Test internal whitespace runs become one space."""
        assert normalize_name("Blue   \t Razz") == "blue razz"

    def test_empty_input(self):
        """Test empty and missing values."""
        assert normalize_name("") == ""
        assert normalize_name(None) == ""

    @pytest.mark.parametrize("raw", [
        "a-30mL Freeze",
        "Mr. Freeze  a-30ml",
        "GHOST  Sour Apple!",
        "",
    ])
    def test_idempotent(self, raw):
        """Test normalizing twice gives the same result."""
        once = normalize_name(raw)
        assert normalize_name(once) == once


class TestNormalizeStrength:
    """Test nicotine strength normalization."""

    def test_extracts_first_digit_run(self):
        """Test unit suffixes are dropped."""
        assert normalize_strength("6mg") == "6"
        assert normalize_strength("12 MG") == "12"
        assert normalize_strength("3") == "3"

    def test_numbers_are_coerced(self):
        """Test non-string input."""
        assert normalize_strength(6) == "6"

    def test_missing_is_zero(self):
        """Test empty, falsy and digit-free values give '0'."""
        assert normalize_strength("") == "0"
        assert normalize_strength(None) == "0"
        assert normalize_strength(0) == "0"
        assert normalize_strength("mg") == "0"

    def test_idempotent(self):
        """Test normalizing twice gives the same result."""
        assert normalize_strength(normalize_strength("6mg")) == "6"


class TestNormalizeSize:
    """Test bottle size normalization."""

    def test_extracts_first_digit_run(self):
        """Test unit suffixes are dropped."""
        assert normalize_size("30ml") == "30"
        assert normalize_size("60") == "60"

    def test_keeps_placeholder(self):
        """Test non-numeric sizes stay comparable as text."""
        assert normalize_size("  N/A ") == "N/A"

    def test_empty(self):
        """Test empty values."""
        assert normalize_size("") == ""
        assert normalize_size(None) == ""

    def test_idempotent(self):
        """Test normalizing twice gives the same result."""
        assert normalize_size(normalize_size("30ml")) == "30"
        assert normalize_size(normalize_size("N/A")) == "N/A"


class TestNameSimilarity:
    """Test edit-distance similarity."""

    def test_identical(self):
        """Test equal strings score 100."""
        assert name_similarity("freeze", "freeze") == 100
        assert name_similarity("", "") == 100

    def test_one_empty(self):
        """Test one empty side scores 0."""
        assert name_similarity("", "x") == 0
        assert name_similarity("x", "") == 0

    def test_symmetric(self):
        """Test argument order does not matter."""
        assert name_similarity("freeze", "squeeze") == name_similarity("squeeze", "freeze")
        assert name_similarity("blue razz", "blue raz") == name_similarity("blue raz", "blue razz")

    def test_near_neighbours_stay_apart(self):
        """Test distinct flavors with a shared suffix score below 90."""
        assert name_similarity("freeze", "squeeze") < 90

    def test_single_edit_on_nine_chars_is_89(self):
        """Test one substitution in nine characters."""
        assert name_similarity("abcdefghi", "abcdefghx") == 89

    def test_single_edit_on_ten_chars_is_90(self):
        """Test one substitution in ten characters."""
        assert name_similarity("abcdefghij", "abcdefghix") == 90

    def test_no_transposition_credit(self):
        """Test a swap costs two edits."""
        # "ab" -> "ba" is distance 2 without transposition credit
        assert name_similarity("ab", "ba") == 0

    def test_rounds_half_up(self):
        """Test 2/3 similarity rounds to 67."""
        assert name_similarity("abc", "abx") == 67
