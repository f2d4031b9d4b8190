"""
Fund Control Policy - configurable thresholds and switches

The policy collects every tunable parameter of the fund-control core:
Anti-Deficiency Act risk bands, variance thresholds, override switches,
the admin role, and persistence timeouts. Hard invariants (obligated never
exceeds appropriated) are NOT configurable and do not appear here.

Fun fact: The 5% and 10% warning bands mirror how budget offices treat
appropriation balances - under 5% remaining is "call the comptroller",
under 10% is "watch closely"!
"""

from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class FundControlPolicy(BaseModel):
    """
    Operational parameters for fund control

    Loaded from JSON by the CLI (``--policy``) or constructed directly.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Anti-Deficiency Act risk bands (remaining balance / appropriated)
    ada_high_risk_ratio: Decimal = Field(
        default=Decimal("0.05"),
        ge=0,
        le=1,
        description="Remaining ratio below which an obligation is HIGH risk",
    )

    ada_medium_risk_ratio: Decimal = Field(
        default=Decimal("0.10"),
        ge=0,
        le=1,
        description="Remaining ratio below which an obligation is MEDIUM risk",
    )

    # Obligation rules
    allow_bona_fide_override: bool = Field(
        default=True,
        description="Accept out-of-window obligations that carry a written justification",
    )

    enforce_budget_ceiling: bool = Field(
        default=True,
        description="Obligations also consume the budget's approved ceiling",
    )

    # Approval and versioning
    admin_role: str = Field(
        default="admin",
        min_length=1,
        description="Role allowed to commit rollbacks without approval",
    )

    # Variance analysis (percent of approved amount)
    variance_unfavorable_percent: Decimal = Field(
        default=Decimal("10"),
        gt=0,
        description="Variance at or above this percent is unfavorable",
    )

    variance_favorable_percent: Decimal = Field(
        default=Decimal("-10"),
        lt=0,
        description="Variance at or below this percent is favorable",
    )

    variance_critical_percent: Decimal = Field(
        default=Decimal("20"),
        gt=0,
        description="Variance at or above this percent is critical",
    )

    # Periodic work
    auto_advance_fiscal_years: bool = Field(
        default=True,
        description="Tick moves fiscal years future->current->past by date",
    )

    # Persistence
    db_busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="How long a writer waits for the SQLite lock",
    )

    write_lock_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts to acquire the write lock before giving up",
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "description": "Operational parameters governing fund control"
        },
    }

    @model_validator(mode="after")
    def _check_bands(self) -> "FundControlPolicy":
        if self.ada_high_risk_ratio > self.ada_medium_risk_ratio:
            raise ValueError("ada_high_risk_ratio must not exceed ada_medium_risk_ratio")
        if self.variance_critical_percent < self.variance_unfavorable_percent:
            raise ValueError(
                "variance_critical_percent must be at least variance_unfavorable_percent"
            )
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "FundControlPolicy":
        """Load a policy from a JSON file"""
        return cls.model_validate_json(Path(path).read_text())


default_policy = FundControlPolicy()
