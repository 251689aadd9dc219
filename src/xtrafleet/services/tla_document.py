"""Plain-text rendering of the Trip Lease Agreement and display helpers."""

from datetime import date, datetime
from typing import Optional, Union

from xtrafleet.domain.enums import InsuranceOption, TLAStatus
from xtrafleet.domain.records import Signature, TLARecord, TripTracking


def format_trip_duration(minutes: int) -> str:
    hours, mins = divmod(max(minutes, 0), 60)
    if hours == 0:
        return f"{mins} minutes"
    hour_label = f"{hours} hour{'s' if hours > 1 else ''}"
    if mins == 0:
        return hour_label
    return f"{hour_label} {mins} min"


def format_date(value: Optional[Union[date, datetime]]) -> str:
    if value is None:
        return "Not specified"
    return f"{value:%B} {value.day}, {value.year}"


def _checkbox(checked: bool) -> str:
    return "[x]" if checked else "[ ]"


def _signature_block(title: str, legal_name: str, signature: Optional[Signature]) -> str:
    lines = [f"{title}:", f"Name: {legal_name}"]
    if signature:
        lines.append(f"Signature: {signature.signed_by_name}")
        lines.append(f"Date: {format_date(signature.signed_at)}")
    else:
        lines.append("Signature: _________________________")
        lines.append("Date: _________________________")
    return "\n".join(lines)


def _trip_record_block(tracking: TripTracking) -> list[str]:
    lines = [
        "TRIP RECORD",
        f"Started: {format_date(tracking.started_at)}",
        f"Started By: {tracking.started_by_name or 'Unknown'}",
    ]
    if tracking.ended_at:
        lines += [
            f"Ended: {format_date(tracking.ended_at)}",
            f"Ended By: {tracking.ended_by_name or 'Unknown'}",
            f"Duration: {format_trip_duration(tracking.duration_minutes or 0)}",
        ]
    return lines


def render_tla_text(record: TLARecord) -> str:
    """Render the agreement text.

    Once a trip has started the document carries a trip record, and a voided
    agreement is marked as such at the top.
    """
    trip = record.trip
    period = format_date(trip.start_date)
    period += f" - {format_date(trip.end_date)}" if trip.end_date else " - Upon Delivery"
    due = format_date(record.payment.due_date) if record.payment.due_date else "Trip Completion"
    option = record.insurance.option

    cdl = f" ({record.driver.cdl_number})" if record.driver.cdl_number else ""
    medical = (
        f" (expires {format_date(record.driver.medical_card_expiry)})"
        if record.driver.medical_card_expiry
        else ""
    )

    sections = [
        "TRIP (Driver) LEASE AGREEMENT",
        "(FMCSA-Compliant Short-Term Lease - Driver Only)",
        "",
        'This Trip Lease Agreement ("Agreement") is made between:',
        "",
        f"- Fleet A (Lessor Carrier): {record.lessor.legal_name}",
        f"- Fleet B (Lessee Carrier): {record.lessee.legal_name}",
        f"- Driver: {record.driver.name}",
        f"- Effective Trip Period: {period}",
        f"- Payment Terms: ${record.payment.amount:,.2f} by {due}",
        f"- Trip: {trip.origin} to {trip.destination}, {trip.cargo}, {trip.weight:,.0f} lbs",
        "",
        "1. Purpose",
        "Fleet A agrees to supply the Driver to Fleet B for a single trip under Fleet B's "
        "authority, consistent with applicable FMCSA and state leasing rules.",
        "",
        "2. Term",
        "The lease begins when the Driver reports to Fleet B and ends upon trip completion or delivery.",
        "",
        "3. Control and Responsibility",
        "- Fleet B has exclusive possession, control, and responsibility for the Driver during the trip.",
        "- Fleet B directs all dispatch, routes, and operational matters.",
        "- Fleet A and the Driver must comply with Fleet B's instructions and safety protocols.",
        "",
        "4. Compensation",
        "- Fleet B shall pay Fleet A the agreed amount upon trip completion.",
        "- XtraFleet does not handle, hold, or escrow payments.",
        "",
        "5. Insurance and Liability",
        "Prior to activation, Fleet B must complete one of the following:",
        f"{_checkbox(option == InsuranceOption.EXISTING_POLICY)} I confirm that my active insurance "
        "policy includes leased or temporary drivers for this trip.",
        f"{_checkbox(option == InsuranceOption.TRIP_COVERAGE)} I elect to obtain trip-based coverage "
        "through an approved third-party provider integrated with XtraFleet.",
        "XtraFleet does not verify this attestation.",
        "",
        "Fleet B assumes liability for all vehicle and driver operations.",
        "",
        "Fleet A confirms that the Driver:",
        f"- Holds a valid CDL{cdl},",
        f"- Possesses a current medical certificate{medical}, and",
        "- Has a compliant driver qualification file.",
        "",
        "6. Indemnification",
        "Each party agrees to indemnify and hold harmless the other, and XtraFleet, against claims, "
        "damages, or liabilities caused by its negligence or failure to comply with regulations.",
        "",
        "7. No Liability for Platform Provider",
        "XtraFleet Technologies, Inc. is a neutral technology facilitator and not a motor carrier, "
        "broker, employer, or lessor.",
        "",
        "8. Proof and Retention",
        "Each party shall maintain proof of insurance coverage and compliance documentation for a "
        "minimum of three (3) years from the termination of this Driver Lease.",
        "",
        "9. Termination",
        "This Agreement automatically terminates upon delivery completion or mutual consent.",
        "",
        "10. Governing Law",
        "This Agreement is governed by Delaware law and applicable FMCSA regulations.",
        "",
        "11. Signatures",
        "",
        _signature_block("Lessor (Provider of Driver)", record.lessor.legal_name, record.lessor_signature),
        "",
        _signature_block("Lessee (Hiring Carrier)", record.lessee.legal_name, record.lessee_signature),
    ]
    if record.trip_tracking and record.trip_tracking.started_at:
        sections += ["", *_trip_record_block(record.trip_tracking)]
    if record.status == TLAStatus.VOIDED:
        notice = f"VOIDED on {format_date(record.voided_at)}"
        if record.voided_reason:
            notice += f": {record.voided_reason}"
        sections[2:2] = [notice, ""]
    return "\n".join(sections)
