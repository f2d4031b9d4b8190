"""
Fiscal Module - Fiscal years, appropriations and the fund ledger

This module answers the one question fund control exists for: is there
money to obligate? It implements:
- Fiscal years that only move forward (future → current → past → locked)
- Appropriations with a color of money and a period of availability
- An atomic guarded reservation against the appropriated ceiling

Fun fact: Obligating money you don't have is not just bad accounting - under
the Anti-Deficiency Act it must be reported to the President and Congress!
"""

from fund_control.fiscal.models import (
    AdaRisk,
    Appropriation,
    ColorOfMoney,
    FiscalYear,
    FiscalYearState,
    FundsCheck,
)

__all__ = [
    "AdaRisk",
    "Appropriation",
    "ColorOfMoney",
    "FiscalYear",
    "FiscalYearState",
    "FundsCheck",
]
