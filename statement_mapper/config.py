"""
Configuration module for Statement Mapper.

All tuneable parameters (thresholds, limits, paths, concurrency) live here.
Nothing is hard-coded in the stage modules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class SnifferConfig:
    """Controls delimiter, header and year-column detection."""

    # Number of leading non-blank lines inspected for the header row
    header_scan_lines: int = 3

    # Data rows sampled when deciding whether a column holds years / dates
    sample_rows: int = 50

    # Plausible fiscal years: [min_year, current_year + year_horizon]
    min_year: int = 1990
    year_horizon: int = 5


@dataclass(frozen=True)
class MatchingConfig:
    """Controls concept-to-metric matching."""

    # Fuzzy matching: minimum similarity score (0–100) to accept a match
    fuzzy_threshold: float = 88.0

    # If the two best fuzzy candidates are within this delta, the mapping is
    # flagged as ambiguous.
    fuzzy_ambiguity_delta: float = 3.0

    # The fuzzy layer only runs after every alias pattern has missed.
    enable_fuzzy: bool = True

    # When True the pipeline raises on any error issue instead of returning
    # an invalid result.
    strict_mode: bool = False


@dataclass(frozen=True)
class BuilderConfig:
    """Controls record building."""

    # Currency applied when the document carries no currency column
    default_currency: str = "EUR"

    # Hard limits; anything beyond is dropped with a ``range`` error
    max_rows: int = 10_000
    max_columns: int = 64


@dataclass(frozen=True)
class ValidationConfig:
    """Controls the validation layer."""

    # Absolute tolerance for Assets - Liabilities - Equity
    balance_tolerance: float = 1.0

    # Maximum plausible absolute amount; catches obvious unit errors
    max_absolute_value: float = 1e12

    # Document categories / metric codes that *must* be present.  Empty
    # lists disable the checks.
    required_categories: list[str] = field(default_factory=list)
    required_metrics: list[str] = field(default_factory=list)

    # When True, duplicate keys are errors; when False, warnings.
    error_on_duplicate: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration aggregating all sub-configs."""

    sniffer: SnifferConfig = field(default_factory=SnifferConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    # Logging level for the mapping audit trail
    log_level: int = logging.INFO
    log_file: Optional[str] = None

    # Optional path to a user-supplied alias JSON file that is *merged*
    # with the built-in dictionary.
    custom_alias_path: Optional[Path] = None

    # Maximum number of documents processed at once by ``ingest_batch``
    max_concurrency: int = 4

    # Seconds to wait for the persistence collaborator before failing a run
    store_timeout_seconds: float = 10.0

    # "all_or_nothing": invalid runs are never written.
    # "valid_rows": rows involved in duplicate keys are withheld, the rest
    # is written.
    persist_policy: str = "all_or_nothing"

    # Subtracted from the sniffer confidence for pre-extracted input
    extraction_confidence_penalty: float = 0.2
