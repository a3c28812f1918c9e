import hashlib
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_HOUSEHOLD_ID = 1
RECURRING_MARKER = "[Fixed]"
ALTERNATING_MARKER = "[Fixed Alt]"

# Largest integer a JSON/JavaScript client can key on without precision loss.
_MAX_VIRTUAL_ID = 2**53 - 1


class RecordType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    monthly_alternating = "monthly_alternating"
    yearly = "yearly"


MATERIALIZED_FREQUENCIES = frozenset({Frequency.monthly, Frequency.monthly_alternating})


@dataclass(frozen=True)
class Member:
    id: int
    display_name: str


@dataclass(frozen=True)
class RecurrenceTemplate:
    id: int
    type: RecordType
    amount_cents: int
    category_id: int
    start_date: date
    frequency: Frequency
    payer_user_id: int
    end_date: Optional[date] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class MaterializedInstance:
    id: int
    type: RecordType
    amount_cents: int
    date: date
    description: str
    category_id: int
    household_id: int
    payer_user_id: int
    template_id: int


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def resolve_occurrence_day(year: int, month: int, day: int) -> date:
    """Place ``day`` in the given month, snapping to the month's last day."""
    return date(year, month, min(day, days_in_month(year, month)))


def months_between(start: date, year: int, month: int) -> int:
    return (year * 12 + month) - (start.year * 12 + start.month)


def resolve_payer(
    anchor_payer_id: int,
    frequency: Frequency,
    months_elapsed: int,
    members: Sequence[Member],
) -> int:
    if frequency != Frequency.monthly_alternating or months_elapsed % 2 == 0:
        return anchor_payer_id
    other = next((m for m in members if m.id != anchor_payer_id), None)
    if other is None:
        return anchor_payer_id
    return other.id


def virtual_instance_id(template_id: int, year: int, month: int) -> int:
    """Stable negative id for the instance of ``template_id`` in a zero-based month.

    Persisted records get positive autoincrement ids, so a negative id can
    never be mistaken for a stored row.
    """
    key = f"recurring-{template_id}-{year}-{month}"
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    value = int.from_bytes(digest[:8], "big") & _MAX_VIRTUAL_ID
    return -(value or 1)


def is_virtual_id(value: int) -> bool:
    return value < 0


def annotate_description(description: Optional[str], frequency: Frequency) -> str:
    marker = (
        ALTERNATING_MARKER
        if frequency == Frequency.monthly_alternating
        else RECURRING_MARKER
    )
    text = (description or "").strip()
    return f"{marker} {text}" if text else marker


def _coerce_frequency(value) -> Optional[Frequency]:
    try:
        return Frequency(value)
    except ValueError:
        return None


def materialize(
    templates: Iterable[RecurrenceTemplate],
    year: int,
    month: int,
    members: Sequence[Member],
    *,
    household_id: int = DEFAULT_HOUSEHOLD_ID,
) -> list[MaterializedInstance]:
    """Derive the synthetic transactions that recurring templates produce in a month.

    ``month`` is zero-based (0 = January). Months outside 0-11 roll over into
    the neighbouring years. The result depends only on the arguments: the same
    templates, month and member list always give the same ids, dates and
    payers. Templates that are out of their active window, have an end date
    before their start date, or use a frequency other than monthly or
    monthly alternating contribute nothing; none of these cases raise.

    Any objects exposing the ``RecurrenceTemplate`` / ``Member`` attributes are
    accepted, which lets callers pass rows they already loaded.
    """
    year, month = year + month // 12, month % 12
    calendar_month = month + 1
    month_start, month_end = month_bounds(year, calendar_month)

    instances: list[MaterializedInstance] = []
    for template in templates:
        start = template.start_date
        end = template.end_date

        if start > month_end:
            continue
        if end is not None and end < month_start:
            continue
        if end is not None and end < start:
            logger.debug(
                f"recurrence_skip: template={template.id} reason=inverted_range "
                f"start={start} end={end}"
            )
            continue

        frequency = _coerce_frequency(template.frequency)
        if frequency not in MATERIALIZED_FREQUENCIES:
            logger.debug(
                f"recurrence_skip: template={template.id} "
                f"reason=unsupported_frequency frequency={template.frequency}"
            )
            continue

        occurrence = resolve_occurrence_day(year, calendar_month, start.day)
        if occurrence < start or (end is not None and occurrence > end):
            continue

        payer_id = resolve_payer(
            template.payer_user_id,
            frequency,
            months_between(start, year, calendar_month),
            members,
        )

        instances.append(
            MaterializedInstance(
                id=virtual_instance_id(template.id, year, month),
                type=RecordType(template.type),
                amount_cents=template.amount_cents,
                date=occurrence,
                description=annotate_description(template.description, frequency),
                category_id=template.category_id,
                household_id=household_id,
                payer_user_id=payer_id,
                template_id=template.id,
            )
        )
    return instances


def materialize_month(
    templates: Iterable[RecurrenceTemplate],
    year: int,
    month: int,
    members: Sequence[Member],
    *,
    household_id: int = DEFAULT_HOUSEHOLD_ID,
) -> list[MaterializedInstance]:
    """Same as ``materialize`` but takes a calendar month (1-12)."""
    return materialize(
        templates, year, month - 1, members, household_id=household_id
    )
