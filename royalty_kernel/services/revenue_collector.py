"""
RevenueCollector -- per-license revenue for a run period, with provenance.

Responsibility:
    Finds the licenses active in [period_start, period_end) and computes the
    revenue each one contributes: a pro-rated share of its flat fee plus any
    usage revenue reported in the period.

Architecture position:
    Kernel > Services -- imperative shell over CatalogSelector (reads) and
    royalty_engines.proration (pure arithmetic).

Invariants enforced:
    - fee component = floor(fee_cents * overlap_days / license_total_days),
      integer arithmetic; the full fee when proration is disabled.
    - usage component = sum of revenue events with
      period_start <= occurred_on < period_end.
    - Licenses with zero overlap or zero total revenue are excluded.
    - Output ordered by license identity.

Failure modes:
    - LicenseTermError: a license term of zero (or negative) length.
    - NegativeAmountError: a negative fee or a negative usage total.
    - TransactionTimeoutError: via the optional deadline, checked per license.
"""

from datetime import date

from sqlalchemy.orm import Session

from royalty_engines.proration import overlap_window, prorate_fee, term_days
from royalty_kernel.domain.dtos import LicenseRevenue
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import LicenseTermError, NegativeAmountError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.selectors.catalog_selector import CatalogSelector, LicenseTerm
from royalty_kernel.services.deadline import OperationDeadline

logger = get_logger("services.revenue_collector")

FORMULA_FLAT_FEE = "flat_fee"
FORMULA_FLAT_FEE_PRORATED = "flat_fee_prorated"
FORMULA_REVENUE_SHARE = "revenue_share"
FORMULA_HYBRID = "hybrid"


class RevenueCollector:
    def __init__(self, session: Session, settings: EngineSettings | None = None):
        self._catalog = CatalogSelector(session)
        self._settings = settings or EngineSettings()

    def collect(
        self,
        period_start: date,
        period_end: date,
        deadline: OperationDeadline | None = None,
    ) -> tuple[LicenseRevenue, ...]:
        revenues: list[LicenseRevenue] = []
        licenses = self._catalog.active_licenses(period_start, period_end)

        for term in licenses:
            if deadline is not None:
                deadline.check("revenue_collection")
            revenue = self._license_revenue(term, period_start, period_end)
            if revenue is not None:
                revenues.append(revenue)

        logger.info(
            "revenue_collected",
            extra={
                "period_start": period_start,
                "period_end": period_end,
                "candidate_licenses": len(licenses),
                "included_licenses": len(revenues),
                "total_revenue_cents": sum(r.revenue_cents for r in revenues),
            },
        )
        return tuple(revenues)

    def _license_revenue(
        self,
        term: LicenseTerm,
        period_start: date,
        period_end: date,
    ) -> LicenseRevenue | None:
        total_days = term_days(term.start_date, term.end_date)
        if total_days <= 0:
            logger.error(
                "license_term_invalid",
                extra={
                    "license_id": str(term.license_id),
                    "start_date": term.start_date,
                    "end_date": term.end_date,
                },
            )
            raise LicenseTermError(str(term.license_id), term.start_date, term.end_date)

        window = overlap_window(term.start_date, term.end_date, period_start, period_end)
        if window.is_empty:
            return None

        has_fee = term.fee_cents != 0
        has_share = term.rev_share_bps > 0 and self._settings.enable_usage_revenue

        fee_component = 0
        if has_fee:
            if self._settings.enable_license_proration:
                fee_component = prorate_fee(
                    fee_cents=term.fee_cents,
                    overlap_days=window.days,
                    license_total_days=total_days,
                )
            elif term.fee_cents < 0:
                raise NegativeAmountError("fee_cents", term.fee_cents, str(term.license_id))
            else:
                fee_component = term.fee_cents

        usage_component = 0
        if has_share:
            usage_component = self._catalog.usage_revenue_cents(
                term.license_id, period_start, period_end
            )
            if usage_component < 0:
                raise NegativeAmountError(
                    "usage_revenue_cents", usage_component, str(term.license_id)
                )

        revenue_cents = fee_component + usage_component
        if revenue_cents == 0:
            logger.debug(
                "license_excluded_zero_revenue",
                extra={"license_id": str(term.license_id)},
            )
            return None

        if has_fee and has_share:
            formula = FORMULA_HYBRID
        elif has_share:
            formula = FORMULA_REVENUE_SHARE
        elif self._settings.enable_license_proration and window.days < total_days:
            formula = FORMULA_FLAT_FEE_PRORATED
        else:
            formula = FORMULA_FLAT_FEE

        return LicenseRevenue(
            license_id=term.license_id,
            asset_id=term.asset_id,
            revenue_cents=revenue_cents,
            fee_component_cents=fee_component,
            usage_component_cents=usage_component,
            formula=formula,
            overlap_start=window.start,
            overlap_end=window.end,
            overlap_days=window.days,
            license_total_days=total_days,
        )
