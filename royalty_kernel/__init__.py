"""
Royalty Kernel

The persistent core of the royalty calculation and statement engine:
- Run lifecycle with a single "become immutable" lock transition
- Pro-rated license revenue and exact largest-remainder splits
- Minimum payout thresholds with carryover between periods
- Validation report and audited rollback of calculated/locked runs
- Full auditability via hash chain
"""

__version__ = "0.1.0"
