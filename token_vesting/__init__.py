"""
Token Vesting Ledger

Linear native-asset vesting schedules with a cliff, setup-fee deduction and
owner-triggered revocation. All amounts are integer base units and all
mutations are atomic with a hash-chained audit trail.
"""

__version__ = "1.0.0"
