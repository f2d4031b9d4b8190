"""
Variance Module - Read-only execution analysis

Approved vs. obligated vs. expended, per budget and per line item.
"""

from fund_control.variance.analyzer import VarianceAnalyzer
from fund_control.variance.models import VarianceStatus

__all__ = ["VarianceAnalyzer", "VarianceStatus"]
