from contractor_billing.reporting.dashboard import DashboardService
from contractor_billing.reporting.periods import (
    DateRange,
    MonthRange,
    format_period_label,
    get_calendar_year,
    get_company_year,
    get_months_in_range,
    get_tax_year,
    get_vat_quarter,
    get_vat_quarters,
)

__all__ = [
    "DashboardService",
    "DateRange",
    "MonthRange",
    "format_period_label",
    "get_calendar_year",
    "get_company_year",
    "get_months_in_range",
    "get_tax_year",
    "get_vat_quarter",
    "get_vat_quarters",
]
