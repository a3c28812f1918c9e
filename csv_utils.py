import csv
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO

from models import RecordType
from schemas import StatementRow

IMPORT_PREFIX = "Imported: "


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
        if not amount.is_finite():
            raise ValueError("Invalid amount")
        cents = int((amount * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def _normalized(raw: dict) -> dict[str, str]:
    return {
        key.strip().lower(): (value or "").strip()
        for key, value in raw.items()
        if key is not None
    }


def parse_statement(
    content: str, *, default_date: date
) -> tuple[list[StatementRow], list[str]]:
    """Parse a bank statement export with Date, Amount, Description columns.

    Negative amounts are expenses, everything else is income.
    """
    reader = csv.DictReader(StringIO(content.lstrip("﻿")))
    rows: list[StatementRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        fields = _normalized(raw)
        if not any(fields.values()):
            continue
        try:
            date_raw = fields.get("date", "")
            row_date = parse_date(date_raw) if date_raw else default_date
            signed = parse_amount(fields.get("amount") or "0", allow_negative=True)
            description = fields.get("description", "")
            rows.append(
                StatementRow(
                    date=row_date,
                    type=RecordType.expense if signed < 0 else RecordType.income,
                    amount_cents=abs(signed),
                    description=f"{IMPORT_PREFIX}{description}",
                    category=fields.get("category") or None,
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors
