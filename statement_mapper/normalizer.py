"""
Label and Value Normalization Layer.

Transforms raw labels and amount cells into a uniform representation so
that downstream matchers and builders operate on clean, comparable values.

Label transformations (in order):
1. Strip leading / trailing whitespace
2. Lowercase conversion
3. Accent removal (``Año`` → ``ano``, ``Explotación`` → ``explotacion``)
4. Unicode dashes → ASCII hyphen
5. Strip punctuation (except ``&``, ``/`` and hyphens inside words)
6. Collapse whitespace

Amounts accept both ``.`` and ``,`` as decimal separators.
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Optional, Tuple

from statement_mapper.logging_setup import get_logger

logger = get_logger("normalizer")

# Locales whose decimal mark is a comma
_COMMA_DECIMAL_LOCALES = {"es", "de", "fr", "it", "pt", "nl", "ca", "eu", "gl"}


def decimal_hint_for_locale(locale_hint: Optional[str]) -> Optional[str]:
    """Return ``","`` / ``"."`` for a locale such as ``"es-ES"``, else None."""
    if not locale_hint:
        return None
    lang = re.split(r"[-_]", locale_hint.strip().lower())[0]
    if lang in _COMMA_DECIMAL_LOCALES:
        return ","
    if lang:
        return "."
    return None


class LabelNormalizer:
    """Stateless normaliser.  All methods are pure functions."""

    # Currency symbols and ISO codes to strip from values
    _CURRENCY_RE = re.compile(r"[₹$€£¥]|^[A-Z]{3}\s+|\s+[A-Z]{3}$")

    # Parenthetical negative: ``(1234)`` → ``-1234``
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")

    # Characters to remove from labels (keep letters, digits, spaces, -, &, /)
    _PUNCT_RE = re.compile(r"[^a-z0-9\s\-&/]")

    _MULTI_SPACE_RE = re.compile(r"\s+")

    _NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")

    # ------------------------------------------------------------------ #
    # Labels
    # ------------------------------------------------------------------ #

    def normalize_label(self, raw: str) -> str:
        """Return the canonical-comparable form of a raw label string.

        Parameters
        ----------
        raw:
            The original header or concept cell as found in the source data.

        Returns
        -------
        str
            Cleaned, accent-free label ready for matching.
        """
        text = str(raw).strip().lower()
        text = unicodedata.normalize("NFKD", text)
        text = "".join(ch for ch in text if not unicodedata.combining(ch))
        text = text.replace("–", "-").replace("—", "-")
        text = self._PUNCT_RE.sub(" ", text)
        text = self._MULTI_SPACE_RE.sub(" ", text).strip()

        logger.debug("normalize_label: %r → %r", raw, text)
        return text

    # ------------------------------------------------------------------ #
    # Values
    # ------------------------------------------------------------------ #

    def normalize_value(
        self,
        raw: Any,
        decimal_hint: Optional[str] = None,
    ) -> Tuple[Optional[float], list[str]]:
        """Attempt to parse a numeric financial value.

        Handles:
        * Western and European separators: ``"1,234.56"`` / ``"1.234,56"``
        * Decimal comma: ``"125000,50"``
        * Currency prefixes / suffixes: ``"€12000"``, ``"12000 EUR"``
        * Parenthetical negatives: ``"(5000)"``
        * Already-numeric inputs (int / float)

        Parameters
        ----------
        decimal_hint:
            ``","`` or ``"."`` when the document locale is known; only used
            to disambiguate a single separator followed by three digits.

        Returns
        -------
        tuple[float | None, list[str]]
            (parsed_value, list_of_warnings).  ``None`` if parsing fails.
        """
        warnings: list[str] = []

        if raw is None:
            warnings.append("Value is None")
            return None, warnings

        if isinstance(raw, bool):
            warnings.append("Unexpected value type: bool")
            return None, warnings

        if isinstance(raw, (int, float)):
            value = float(raw)
            if math.isnan(value) or math.isinf(value):
                warnings.append(f"Non-finite numeric value: {raw!r}")
                return None, warnings
            return value, warnings

        if not isinstance(raw, str):
            warnings.append(f"Unexpected value type: {type(raw).__name__}")
            return None, warnings

        text = raw.strip()
        if not text:
            warnings.append("Value is empty string")
            return None, warnings

        text = self._CURRENCY_RE.sub("", text).strip()

        m = self._PAREN_NEG_RE.match(text)
        if m:
            text = "-" + m.group(1).strip()

        if text.endswith("%"):
            text = text[:-1].strip()
            warnings.append("Percent symbol stripped; raw value treated as number")

        # Thousands spacing: "1 234,56", "1'234.56", non-breaking spaces
        text = re.sub(r"[\s  ']", "", text)

        for candidate in self._candidates(text, decimal_hint):
            if self._NUMBER_RE.match(candidate):
                value = float(candidate)
                logger.debug("normalize_value: %r → %s", raw, value)
                return value, warnings

        warnings.append(f"Cannot parse numeric value from: {raw!r}")
        return None, warnings

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _candidates(text: str, decimal_hint: Optional[str]) -> list[str]:
        """Return plain ``float()`` spellings of *text*, most likely first.

        The first candidate treats ``.`` as the decimal mark, the second
        treats ``,`` as the decimal mark; the order is swapped when the
        separators present make the comma reading the likelier one.
        """
        dot_first = text.replace(",", "")
        comma_first = text.replace(".", "").replace(",", ".")

        dots, commas = text.count("."), text.count(",")
        if dots and commas:
            comma_is_decimal = text.rfind(",") > text.rfind(".")
        elif commas == 1:
            thousands = re.search(r",\d{3}$", text) is not None
            comma_is_decimal = not (thousands and decimal_hint == ".")
        elif dots == 1:
            thousands = re.search(r"\.\d{3}$", text) is not None
            comma_is_decimal = thousands and decimal_hint == ","
        else:
            # Repeated separators are thousands groups
            comma_is_decimal = dots > 1

        return [comma_first, dot_first] if comma_is_decimal else [dot_first, comma_first]
