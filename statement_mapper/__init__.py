"""
Statement Mapper: Financial Statement Normalization Engine.

Reads balance sheets, P&L accounts, cash-flow statements and debt schedules
exported with inconsistent layouts and column names, maps every line to a
canonical metric catalogue, validates the result and derives financial
ratios and period-over-period KPIs.

Every mapping is auditable.  Labels that cannot be matched are kept and
reported, never dropped or guessed silently.
"""

__version__ = "1.0.0"
__author__ = "Statement Mapper Team"

from statement_mapper.pipeline import DocumentInput, IngestionPipeline  # noqa: F401
