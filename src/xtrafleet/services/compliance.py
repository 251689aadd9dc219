"""Driver compliance evaluator: Green / Yellow / Red from certification dates.

Rules:
- Any required item absent -> Red, checked before any date logic.
- Expiry items (CDL, medical card, insurance): expired -> Red; expiring
  within the warning window (inclusive) -> Yellow.
- Screening items (background check, drug & alcohol) are valid for one
  year from the screening date; same Red / Yellow rule on date + 1 year.
- Pre-employment screening never expires; presence is enough.
- Unparseable dates -> Red.
- Red wins over Yellow no matter where it appears in the item list.

Pure: no I/O, deterministic given (items, now).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from xtrafleet.domain.enums import ComplianceIssue, ComplianceItemKind, ComplianceStatus

EXPIRY_WARNING_DAYS = 30
SCREENING_VALIDITY_YEARS = 1

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class ComplianceItem:
    label: str
    value: Optional[Any]
    kind: ComplianceItemKind


@dataclass(frozen=True)
class ComplianceFinding:
    label: str
    issue: ComplianceIssue
    expires_on: Optional[date] = None
    days_remaining: Optional[int] = None


@dataclass
class ComplianceResult:
    status: ComplianceStatus
    findings: list[ComplianceFinding] = field(default_factory=list)

    @property
    def is_eligible(self) -> bool:
        return self.status != ComplianceStatus.RED


def _is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def parse_date(value: DateLike) -> date:
    """Coerce an ISO date / datetime string (or date object) to a calendar date.

    Raises ValueError for anything unparseable.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Unsupported date value: {value!r}")
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        # Full timestamps such as "2026-11-17T00:00:00.000Z"
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def add_years(value: date, years: int) -> date:
    """Add calendar years; Feb 29 rolls forward to Mar 1 in non-leap years."""
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return date(value.year + years, 3, 1)


def _today(now: Union[date, datetime]) -> date:
    return now.date() if isinstance(now, datetime) else now


def _check_window(
    label: str,
    expires_on: date,
    today: date,
    warning_days: int,
) -> Optional[ComplianceFinding]:
    days_remaining = (expires_on - today).days
    if days_remaining < 0:
        return ComplianceFinding(label, ComplianceIssue.EXPIRED, expires_on, days_remaining)
    if days_remaining <= warning_days:
        return ComplianceFinding(label, ComplianceIssue.EXPIRING_SOON, expires_on, days_remaining)
    return None


def evaluate_compliance_items(
    items: Iterable[ComplianceItem],
    now: Union[date, datetime],
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> ComplianceResult:
    """Evaluate a list of compliance items and report why it is not Green.

    The status short-circuits to Red on the first red finding; that
    finding is the last one in ``findings``.
    """
    items = list(items)
    today = _today(now)
    findings: list[ComplianceFinding] = []

    # Missing anything is Red before any date is looked at
    missing = [item for item in items if _is_absent(item.value)]
    if missing:
        return ComplianceResult(
            ComplianceStatus.RED,
            [ComplianceFinding(item.label, ComplianceIssue.MISSING) for item in missing],
        )

    for item in items:
        if item.kind == ComplianceItemKind.FIELD:
            continue

        try:
            dated = parse_date(item.value)
        except (TypeError, ValueError):
            findings.append(ComplianceFinding(item.label, ComplianceIssue.INVALID_DATE))
            return ComplianceResult(ComplianceStatus.RED, findings)

        if item.kind == ComplianceItemKind.SCREENING:
            expires_on = add_years(dated, SCREENING_VALIDITY_YEARS)
        else:
            expires_on = dated

        finding = _check_window(item.label, expires_on, today, warning_days)
        if finding is None:
            continue
        findings.append(finding)
        if finding.issue == ComplianceIssue.EXPIRED:
            return ComplianceResult(ComplianceStatus.RED, findings)

    if findings:
        return ComplianceResult(ComplianceStatus.YELLOW, findings)
    return ComplianceResult(ComplianceStatus.GREEN, findings)


def driver_compliance_items(driver: Any) -> list[ComplianceItem]:
    """Build the canonical required-item list from a Driver row (or any object with the same attributes)."""
    return [
        ComplianceItem("CDL License", getattr(driver, "cdl_license", None), ComplianceItemKind.FIELD),
        ComplianceItem("CDL Expiry", getattr(driver, "cdl_expiry", None), ComplianceItemKind.EXPIRY),
        ComplianceItem(
            "Medical Card", getattr(driver, "medical_card_expiry", None), ComplianceItemKind.EXPIRY
        ),
        ComplianceItem("Insurance", getattr(driver, "insurance_expiry", None), ComplianceItemKind.EXPIRY),
        ComplianceItem(
            "MVR Number",
            getattr(driver, "motor_vehicle_record_number", None),
            ComplianceItemKind.FIELD,
        ),
        ComplianceItem(
            "Background Check",
            getattr(driver, "background_check_date", None),
            ComplianceItemKind.SCREENING,
        ),
        ComplianceItem(
            "Pre-Employment Screening",
            getattr(driver, "pre_employment_screening_date", None),
            ComplianceItemKind.FIELD,
        ),
        ComplianceItem(
            "Drug & Alcohol Screening",
            getattr(driver, "drug_and_alcohol_screening_date", None),
            ComplianceItemKind.SCREENING,
        ),
    ]


def evaluate_driver_compliance(
    driver: Any,
    now: Union[date, datetime],
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> ComplianceResult:
    return evaluate_compliance_items(driver_compliance_items(driver), now, warning_days)


def get_compliance_status(
    driver: Any,
    now: Union[date, datetime],
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> ComplianceStatus:
    """Return just the tri-state status for a driver."""
    return evaluate_driver_compliance(driver, now, warning_days).status
