"""
Obligations Module - Binding commitments and disbursements

An obligation reserves appropriated money for a purpose; expenditures pay
it out. Both are posted through guarded balance updates so neither the
appropriation nor the obligation can ever be overdrawn.
"""

from fund_control.obligations.models import (
    BonaFideNeedException,
    Expenditure,
    Obligation,
    ObligationStatus,
)

__all__ = [
    "BonaFideNeedException",
    "Expenditure",
    "Obligation",
    "ObligationStatus",
]
