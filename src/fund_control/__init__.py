"""
Fund Control - Event-sourced federal budget fund control

Tracks appropriations, obligations and expenditures with balances that can
never go negative, versions every budget change, and routes changes
through strictly sequential multi-level approval.

Fun fact: The Anti-Deficiency Act has been on the books since 1870 - spending
money you weren't given is still a federal offense, so the ledger refuses to.
"""

from fund_control.core import FundControl

__version__ = "0.1.0"
__all__ = ["FundControl", "__version__"]
