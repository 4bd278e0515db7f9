"""Selectors for the royalty kernel (read side)."""

from royalty_kernel.selectors.catalog_selector import (
    CatalogSelector,
    CreatorProfile,
    LicenseTerm,
    OwnershipRecord,
)
from royalty_kernel.selectors.run_selector import PriorBalance, RunSelector

__all__ = [
    "CatalogSelector",
    "CreatorProfile",
    "LicenseTerm",
    "OwnershipRecord",
    "PriorBalance",
    "RunSelector",
]
