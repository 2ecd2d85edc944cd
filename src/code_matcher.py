"""
Product code normalization and matching.

Codes reach the engine from barcode scanners, keyboards and spreadsheet
imports, and the same product shows up as "A1", " a1 ", "00123", "123" or
"SKU-123/". The matcher accepts all of those as one product. It runs a
lenient cascade of rules rather than a single equivalence relation.

The cascade is NOT transitive: "12" matches "123" and "124" by prefix, while
"123" and "124" do not match each other. Callers rely on this leniency for
scanner noise, so do not tighten it.

Codes in the preserve-literal set (configured through [Matching]
PreserveCodes) keep their literal form under normalize(), and two preserved
codes only match each other when identical. A non-preserved scan still reaches
a preserved code through the lenient rules, so exact lookups in find_line()
prefer the literal line.
"""

import re
from typing import Any, Iterable, Optional, Sequence

from logger import get_logger
from models import OrderLine

logger = get_logger(__name__)

_WHITESPACE = re.compile(r'\s+')
# ASCII only: an accented letter at either end is stripped like punctuation
_EDGE_PUNCTUATION = re.compile(r'^[^a-z0-9]+|[^a-z0-9]+$')
_NON_ALNUM = re.compile(r'[^a-z0-9]')
_DIGITS = re.compile(r'^[0-9]+$')


def _to_text(code: Any) -> str:
    """Raw code as trimmed text; None becomes an empty string."""
    if code is None:
        return ''
    return str(code).strip()


def _compact(text: str) -> str:
    """Lowercase with every whitespace run removed."""
    return _WHITESPACE.sub('', text.lower())


def _is_number(text: str) -> bool:
    return bool(_DIGITS.match(text))


class CodeMatcher:
    """
    Canonicalizes product codes and decides whether two codes denote the
    same order line.

    Attributes:
        preserve_codes (frozenset): Lowercased preserve-literal codes
    """

    def __init__(self, preserve_codes: Iterable[str] = ()):
        self.preserve_codes = frozenset(_compact(_to_text(c)) for c in preserve_codes if _to_text(c))
        logger.debug(f"CodeMatcher initialized with {len(self.preserve_codes)} preserved codes")

    def _preserved(self, context: Optional[Iterable[str]]) -> frozenset:
        if not context:
            return self.preserve_codes
        return self.preserve_codes | {_compact(_to_text(c)) for c in context if _to_text(c)}

    @staticmethod
    def _member(text: str, preserved: frozenset) -> Optional[str]:
        """Preserved code this raw text denotes, if any."""
        compact = _compact(text)
        if compact in preserved:
            return compact
        edged = _EDGE_PUNCTUATION.sub('', compact)
        if edged in preserved:
            return edged
        return None

    def normalize(self, code: Any, context: Optional[Iterable[str]] = None) -> str:
        """
        Canonical form of a code.

        1. Lowercase, trim and drop inner whitespace
        2. Strip non-alphanumeric characters at either end
        3. Preserved codes are returned as configured (lowercased)
        4. Purely numeric codes lose their leading zeros ("00123" -> "123")

        Examples:
            " A1 " -> "a1"
            "(SKU-123)" -> "sku-123"
            "000456" -> "456"
            "0000" -> "0"

        Args:
            code: Raw code (str, int or None)
            context: Extra preserve-literal codes for this call only

        Returns:
            The canonical string, or "" for empty input
        """
        text = _to_text(code)
        if not text:
            return ''

        member = self._member(text, self._preserved(context))
        if member is not None:
            return member

        normalized = _EDGE_PUNCTUATION.sub('', _compact(text))
        if _is_number(normalized):
            return str(int(normalized))
        return normalized

    def equivalent(self, code_a: Any, code_b: Any, context: Optional[Iterable[str]] = None) -> bool:
        """
        Decide whether two codes denote the same product.

        Rules are tried in order and the first success wins:
            1. exact equality of the trimmed raw strings
            2. preserve-literal codes: two members match only literally; a member
               and a non-member match here when literally equal, otherwise the
               cascade continues
            3. equal normalized forms
            4. numeric equality of normalized forms
            5. one normalized form is a prefix of the other
            6. equality after removing every non-alphanumeric character
            7. numeric equality of those stripped forms, ignoring leading zeros

        Empty, None and whitespace-only codes match each other and nothing else.
        """
        text_a = _to_text(code_a)
        text_b = _to_text(code_b)

        if not text_a or not text_b:
            return not text_a and not text_b

        if text_a == text_b:
            return True

        preserved = self._preserved(context)
        member_a = self._member(text_a, preserved)
        member_b = self._member(text_b, preserved)
        if member_a is not None and member_b is not None:
            return member_a == member_b
        if member_a is not None or member_b is not None:
            literal_a = member_a if member_a is not None else _EDGE_PUNCTUATION.sub('', _compact(text_a))
            literal_b = member_b if member_b is not None else _EDGE_PUNCTUATION.sub('', _compact(text_b))
            if literal_a == literal_b:
                return True

        norm_a = self.normalize(text_a, context)
        norm_b = self.normalize(text_b, context)

        if norm_a == norm_b:
            return True
        if not norm_a or not norm_b:
            # punctuation-only input; a blank prefix would match everything
            return False

        if _is_number(norm_a) and _is_number(norm_b) and int(norm_a) == int(norm_b):
            return True

        if norm_a.startswith(norm_b) or norm_b.startswith(norm_a):
            return True

        clean_a = _NON_ALNUM.sub('', norm_a)
        clean_b = _NON_ALNUM.sub('', norm_b)
        if clean_a == clean_b:
            return True

        if _is_number(clean_a) and _is_number(clean_b):
            return int(clean_a) == int(clean_b)

        return False

    def find_line(self, code: Any, lines: Sequence[OrderLine],
                  context: Optional[Iterable[str]] = None) -> Optional[OrderLine]:
        """
        Resolve a scanned code against an order's lines.

        A line whose normalized code equals the scan wins over lines that only
        match through the lenient rules, so "12" goes to line "12" rather than
        an earlier line "123". Ties go to the first line in order.

        Returns:
            The matching OrderLine, or None when nothing matches
        """
        if not _to_text(code):
            return None

        normalized = self.normalize(code, context)
        for line in lines:
            if (self.normalize(line.code, context) == normalized
                    and self.equivalent(code, line.code, context)):
                logger.debug(f"Code '{code}' matched line {line.code} (exact)")
                return line

        for line in lines:
            if self.equivalent(code, line.code, context):
                logger.debug(f"Code '{code}' matched line {line.code} (lenient)")
                return line

        logger.debug(f"Code '{code}' matched no line")
        return None
