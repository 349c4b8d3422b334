"""
Fuzzy Matching Layer.

When no alias pattern fires, this layer uses ``rapidfuzz`` to find the
closest known label.  Targets are every alias pattern plus every metric's
display name, each pointing to its metric code.  Results are
confidence-gated:

* Matches **below** ``fuzzy_threshold`` are rejected outright.
* If the best two candidates point to *different* metric codes and are
  within ``fuzzy_ambiguity_delta`` of each other the result is flagged as
  ambiguous; the caller reports a warning instead of silently trusting it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from rapidfuzz import fuzz, process

from statement_mapper.config import MatchingConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import METRIC_DEFINITIONS

logger = get_logger("fuzzy_matcher")


@dataclass
class FuzzyCandidate:
    """A single candidate returned by the fuzzy matcher."""

    metric_code: str
    target: str
    score: float  # 0–100
    is_ambiguous: bool = False


class FuzzyMatcher:
    """Fuzzy-match a normalised label against known labels.

    Parameters
    ----------
    config:
        Matching thresholds and behaviour flags.
    targets:
        ``{normalised_label: metric_code}``, usually
        ``SynonymMapper.all_aliases()``.  Metric display names are added on
        top.
    """

    def __init__(
        self,
        config: MatchingConfig,
        targets: Optional[Dict[str, str]] = None,
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._config = config
        normalizer = normalizer or LabelNormalizer()

        self._targets: Dict[str, str] = dict(targets or {})
        for definition in METRIC_DEFINITIONS:
            self._targets.setdefault(
                normalizer.normalize_label(definition.name), definition.code
            )

        # Pre-computed list for rapidfuzz ``process.extract``
        self._target_keys: List[str] = list(self._targets.keys())

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def match(self, normalised_label: str) -> Optional[FuzzyCandidate]:
        """Find the best metric for *normalised_label*.

        Returns
        -------
        FuzzyCandidate | None
            Best match above threshold, or ``None`` if nothing qualifies.
        """
        if not normalised_label or not self._target_keys:
            return None

        # token_sort_ratio is robust against word-order differences
        # ("ventas netas" vs "netas ventas").
        results = process.extract(
            normalised_label,
            self._target_keys,
            scorer=fuzz.token_sort_ratio,
            limit=5,
        )

        if not results:
            logger.debug("No fuzzy candidates for %r", normalised_label)
            return None

        best_key, best_score, _ = results[0]
        best_code = self._targets[best_key]

        if best_score < self._config.fuzzy_threshold:
            logger.info(
                "Fuzzy best for %r is %r (%.1f), below threshold %.1f; rejected",
                normalised_label,
                best_key,
                best_score,
                self._config.fuzzy_threshold,
            )
            return None

        is_ambiguous = False
        for other_key, other_score, _ in results[1:]:
            if self._targets[other_key] == best_code:
                continue
            if best_score - other_score <= self._config.fuzzy_ambiguity_delta:
                is_ambiguous = True
                logger.warning(
                    "Ambiguous fuzzy match for %r: best=%r (%.1f), "
                    "runner-up=%r (%.1f), delta %.1f <= %.1f",
                    normalised_label,
                    best_key,
                    best_score,
                    other_key,
                    other_score,
                    best_score - other_score,
                    self._config.fuzzy_ambiguity_delta,
                )
            break

        logger.info(
            "Fuzzy match: %r → %r via %r (score=%.1f, ambiguous=%s)",
            normalised_label,
            best_code,
            best_key,
            best_score,
            is_ambiguous,
        )

        return FuzzyCandidate(
            metric_code=best_code,
            target=best_key,
            score=best_score,
            is_ambiguous=is_ambiguous,
        )
