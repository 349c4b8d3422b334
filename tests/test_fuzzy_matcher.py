"""
Unit tests for the FuzzyMatcher.
"""

from __future__ import annotations

import pytest

from statement_mapper.config import MatchingConfig
from statement_mapper.fuzzy_matcher import FuzzyMatcher
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.synonym_mapper import SynonymMapper


@pytest.fixture
def matcher() -> FuzzyMatcher:
    aliases = SynonymMapper(LabelNormalizer()).all_aliases()
    return FuzzyMatcher(config=MatchingConfig(), targets=aliases)


@pytest.fixture
def strict_matcher() -> FuzzyMatcher:
    return FuzzyMatcher(config=MatchingConfig(fuzzy_threshold=99.0))


# ======================================================================
# Matching
# ======================================================================

class TestMatch:
    def test_close_match_accepted(self, matcher: FuzzyMatcher) -> None:
        result = matcher.match("activo corrientte")  # small typo
        assert result is not None
        assert result.metric_code == "current_assets"
        assert result.score >= 88.0

    def test_typo_in_english_label(self, matcher: FuzzyMatcher) -> None:
        result = matcher.match("net incme")
        assert result is not None
        assert result.metric_code == "net_income"

    def test_display_names_are_targets(self, strict_matcher: FuzzyMatcher) -> None:
        result = strict_matcher.match("headcount")
        assert result is not None
        assert result.metric_code == "headcount"
        assert result.score == 100.0

    def test_no_match_below_threshold(self, matcher: FuzzyMatcher) -> None:
        assert matcher.match("xyzzy gibberish") is None

    def test_word_order_insensitive(self, matcher: FuzzyMatcher) -> None:
        result = matcher.match("corriente activo")
        assert result is not None
        assert result.metric_code == "current_assets"

    def test_empty_input(self, matcher: FuzzyMatcher) -> None:
        assert matcher.match("") is None


# ======================================================================
# Ambiguity
# ======================================================================

class TestAmbiguity:
    def test_close_runner_up_with_other_code_is_ambiguous(self) -> None:
        matcher = FuzzyMatcher(
            config=MatchingConfig(fuzzy_threshold=80.0),
            targets={
                "gastos de personal a": "personnel_expenses",
                "gastos de personal b": "other_operating_expenses",
            },
        )
        result = matcher.match("gastos de personal")
        assert result is not None
        assert result.is_ambiguous

    def test_runner_up_with_same_code_is_not_ambiguous(self) -> None:
        matcher = FuzzyMatcher(
            config=MatchingConfig(fuzzy_threshold=80.0),
            targets={
                "gastos de personal a": "personnel_expenses",
                "gastos de personal b": "personnel_expenses",
            },
        )
        result = matcher.match("gastos de personal")
        assert result is not None
        assert result.metric_code == "personnel_expenses"
        assert not result.is_ambiguous

