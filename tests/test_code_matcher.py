"""
Tests for code_matcher.CodeMatcher.

Covers:
- normalize(): case, whitespace, edge punctuation, leading zeros
- equivalent(): each cascade rule, preserve-literal codes, blank input
- the deliberate non-transitivity of the cascade
- find_line(): exact matches win over lenient ones
"""

import pytest

from code_matcher import CodeMatcher
from models import OrderLine


@pytest.fixture
def matcher():
    return CodeMatcher(preserve_codes=['17061', '18001', '17133', '00042'])


# ============================================================================
# normalize()
# ============================================================================

class TestNormalize:

    @pytest.mark.parametrize("raw, expected", [
        ("A1", "a1"),
        ("  a1  ", "a1"),
        ("SKU 123", "sku123"),
        ("(SKU-123)", "sku-123"),
        ("--ab.cd--", "ab.cd"),
        ("000456", "456"),
        ("0000", "0"),
        (123, "123"),
    ])
    def test_canonical_forms(self, matcher, raw, expected):
        assert matcher.normalize(raw) == expected

    def test_blank_inputs_normalize_to_empty(self, matcher):
        assert matcher.normalize(None) == ""
        assert matcher.normalize("") == ""
        assert matcher.normalize("   ") == ""

    def test_preserved_codes_are_returned_literally(self, matcher):
        assert matcher.normalize("00042") == "00042"
        assert matcher.normalize(" 17061 ") == "17061"

    def test_leading_zero_property(self, matcher):
        """Non-preserved numeric codes normalize the same with or without padding."""
        for code in ["0123", "000123", "0099", "0000007"]:
            assert matcher.normalize(code) == matcher.normalize(code.lstrip("0") or "0")

    def test_context_preserves_extra_codes(self, matcher):
        assert matcher.normalize("0099") == "99"
        assert matcher.normalize("0099", context=["0099"]) == "0099"

    def test_non_ascii_letters_at_the_edges_are_stripped(self, matcher):
        """Only a-z and 0-9 survive at either end; inner characters are kept."""
        assert matcher.normalize("CAFÉ") == "caf"
        assert matcher.normalize("ÑA1") == "a1"
        assert matcher.normalize("PIÑA") == "piña"


# ============================================================================
# equivalent()
# ============================================================================

class TestEquivalentCascade:

    def test_exact_raw_equality(self, matcher):
        assert matcher.equivalent("A1", "A1")

    def test_case_and_whitespace(self, matcher):
        assert matcher.equivalent("a1", "A1")
        assert matcher.equivalent(" A1 ", "a1")

    def test_leading_zeros(self, matcher):
        assert matcher.equivalent("00123", "123")
        assert matcher.equivalent(123, "0123")

    def test_prefix_rule(self, matcher):
        assert matcher.equivalent("ABC", "ABC-01")
        assert matcher.equivalent("12", "123")

    def test_inner_punctuation_rule(self, matcher):
        assert matcher.equivalent("SKU-123-A", "sku123a")
        assert matcher.equivalent("AB.CD", "ab/cd")

    def test_stripped_numeric_rule(self, matcher):
        assert matcher.equivalent("0-12", "012")

    def test_unrelated_codes(self, matcher):
        assert not matcher.equivalent("A1", "B2")
        assert not matcher.equivalent("123", "124")
        assert not matcher.equivalent("Z9", "A1")

    def test_non_transitive_by_prefix(self, matcher):
        """12 ~ 123 and 12 ~ 124, yet 123 !~ 124. This leniency is intended."""
        assert matcher.equivalent("12", "123")
        assert matcher.equivalent("12", "124")
        assert not matcher.equivalent("123", "124")


class TestBlankCodes:

    @pytest.mark.parametrize("a, b", [(None, None), ("", None), ("  ", ""), ("\t", None)])
    def test_blanks_match_each_other(self, matcher, a, b):
        assert matcher.equivalent(a, b)

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_blanks_match_nothing_else(self, matcher, blank):
        assert not matcher.equivalent(blank, "A1")
        assert not matcher.equivalent("0", blank)

    def test_punctuation_only_does_not_match_everything(self, matcher):
        assert not matcher.equivalent("---", "A1")


class TestPreserveCodes:

    PRESERVED = ['17061', '18001', '17133', '00042']

    def test_members_match_only_themselves(self, matcher):
        for a in self.PRESERVED:
            for b in self.PRESERVED:
                assert matcher.equivalent(a, b) == (a == b)

    def test_members_never_match_each_other_leniently(self):
        matcher = CodeMatcher(preserve_codes=['1706', '17061', '00042', '42'])
        assert not matcher.equivalent("1706", "17061")
        assert not matcher.equivalent("00042", "42")

    def test_non_member_falls_through_to_lenient_rules(self, matcher):
        assert matcher.equivalent("017061", "17061")
        assert matcher.equivalent("42", "00042")
        assert matcher.equivalent("170612", "17061")
        assert matcher.equivalent("1706", "17061")

    def test_context_members_never_match_each_other_leniently(self, matcher):
        assert not matcher.equivalent("0099", "99", context=["0099", "99"])
        assert matcher.equivalent("0099", "99", context=["0099"])

    def test_member_tolerates_whitespace_and_edge_punctuation(self, matcher):
        assert matcher.equivalent(" 17061 ", "17061")
        assert matcher.equivalent("17061.", "17061")

    def test_without_configuration_padding_is_lenient(self):
        plain = CodeMatcher()
        assert plain.equivalent("017061", "17061")


# ============================================================================
# find_line()
# ============================================================================

class TestFindLine:

    def test_exact_match_wins_over_earlier_prefix_match(self, matcher):
        lines = [OrderLine("123", 1), OrderLine("12", 1)]
        assert matcher.find_line("12", lines) is lines[1]

    def test_lenient_match_when_no_exact(self, matcher):
        lines = [OrderLine("SKU-123-A", 1)]
        assert matcher.find_line("sku123a", lines) is lines[0]

    def test_first_line_wins_ties(self, matcher):
        lines = [OrderLine("A1", 1), OrderLine("a1", 2)]
        assert matcher.find_line("A1", lines) is lines[0]

    def test_no_match(self, matcher):
        assert matcher.find_line("Z9", [OrderLine("A1", 5)]) is None

    def test_blank_scan_matches_nothing(self, matcher):
        assert matcher.find_line("  ", [OrderLine("A1", 5)]) is None

    def test_padded_scan_reaches_preserved_line(self, matcher):
        lines = [OrderLine("17061", 1)]
        assert matcher.find_line("017061", lines) is lines[0]

    def test_literal_preserved_line_wins(self, matcher):
        lines = [OrderLine("42", 1), OrderLine("00042", 1)]
        assert matcher.find_line("00042", lines) is lines[1]
        assert matcher.find_line("42", lines) is lines[0]
