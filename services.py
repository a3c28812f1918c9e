from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from math import ceil
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from csv_utils import parse_statement
from models import (
    Category,
    FinancialRecord,
    HouseholdMember,
    RecordType,
    RecurringRecord,
)
from periods import Period, month_period, trailing_months
from recurrence import (
    DEFAULT_HOUSEHOLD_ID,
    MaterializedInstance,
    Member,
    RecurrenceTemplate,
    materialize_month,
)
from schemas import (
    CategoryIn,
    FinancialRecordIn,
    MemberIn,
    RecurringRecordIn,
    StatementRow,
)

logger = logging.getLogger(__name__)

DEFAULT_MEMBERS = [
    ("Member 1", "member1@example.com"),
    ("Member 2", "member2@example.com"),
]

SYSTEM_CATEGORIES = [
    ("Rent/Mortgage", RecordType.expense),
    ("Groceries", RecordType.expense),
    ("Utilities", RecordType.expense),
    ("Restaurants", RecordType.expense),
    ("Salary", RecordType.income),
    ("Benefits", RecordType.income),
    ("Investments", RecordType.income),
    ("Leisure", RecordType.expense),
]


class RecordNotFound(ValueError):
    pass


class ImportCategoryAmbiguous(ValueError):
    pass


def get_current_household_id() -> int:
    return DEFAULT_HOUSEHOLD_ID


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def seed_defaults(session: Session, household_id: Optional[int] = None) -> None:
    household_id = household_id or get_current_household_id()
    has_members = session.scalar(
        select(func.count(HouseholdMember.id)).where(
            HouseholdMember.household_id == household_id
        )
    )
    if not has_members:
        for position, (name, email) in enumerate(DEFAULT_MEMBERS):
            session.add(
                HouseholdMember(
                    household_id=household_id,
                    display_name=name,
                    email=email,
                    position=position,
                )
            )

    existing = {
        (row.type, row.name.lower())
        for row in session.execute(
            select(Category.type, Category.name).where(
                Category.household_id == household_id
            )
        )
    }
    for name, record_type in SYSTEM_CATEGORIES:
        if (record_type, name.lower()) in existing:
            continue
        session.add(
            Category(
                household_id=household_id,
                name=name,
                type=record_type,
                is_system=True,
            )
        )
    session.flush()


def _validate_references(
    session: Session,
    household_id: int,
    record_type: RecordType,
    category_id: int,
    payer_user_id: int,
) -> None:
    category = session.get(Category, category_id)
    if not category or category.household_id != household_id:
        raise ValueError("Category not found")
    if category.type != record_type:
        raise ValueError("Category type mismatch")
    payer = session.get(HouseholdMember, payer_user_id)
    if not payer or payer.household_id != household_id:
        raise ValueError("Payer not found")


class MemberService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = household_id or get_current_household_id()

    def list_all(self) -> list[HouseholdMember]:
        stmt = (
            select(HouseholdMember)
            .where(HouseholdMember.household_id == self.household_id)
            .order_by(HouseholdMember.position, HouseholdMember.id)
        )
        return self.session.scalars(stmt).all()

    def members(self) -> list[Member]:
        return [member.to_member() for member in self.list_all()]

    def get(self, member_id: int) -> HouseholdMember:
        member = self.session.get(HouseholdMember, member_id)
        if not member or member.household_id != self.household_id:
            raise RecordNotFound("Member not found")
        return member

    def create(self, data: MemberIn) -> HouseholdMember:
        name = data.display_name.strip()
        if not name:
            raise ValueError("Display name must not be empty")
        last_position = self.session.scalar(
            select(func.max(HouseholdMember.position)).where(
                HouseholdMember.household_id == self.household_id
            )
        )
        member = HouseholdMember(
            household_id=self.household_id,
            display_name=name,
            email=data.email,
            position=0 if last_position is None else last_position + 1,
        )
        self.session.add(member)
        self.session.commit()
        self.session.refresh(member)
        return member

    def rename(self, member_id: int, display_name: str) -> HouseholdMember:
        member = self.get(member_id)
        name = display_name.strip()
        if not name:
            raise ValueError("Display name must not be empty")
        member.display_name = name
        self.session.commit()
        return member


class CategoryService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = household_id or get_current_household_id()

    def list_all(self, record_type: Optional[RecordType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.household_id == self.household_id)
            .order_by(Category.type, Category.id)
        )
        if record_type is not None:
            stmt = stmt.where(Category.type == record_type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.household_id != self.household_id:
            raise RecordNotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValueError("Category name must not be empty")
        existing = self.session.scalar(
            select(Category).where(
                Category.household_id == self.household_id,
                Category.type == data.type,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            household_id=self.household_id,
            name=name,
            type=data.type,
            is_system=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if category.is_system:
            raise ValueError("System categories cannot be deleted")
        in_use = self.session.scalar(
            select(func.count(FinancialRecord.id)).where(
                FinancialRecord.category_id == category_id
            )
        ) or self.session.scalar(
            select(func.count(RecurringRecord.id)).where(
                RecurringRecord.category_id == category_id
            )
        )
        if in_use:
            raise ValueError("Category is still in use")
        self.session.delete(category)
        self.session.commit()


@dataclass
class RecordFilters:
    query: Optional[str] = None
    type: Optional[RecordType] = None
    payer_id: Optional[int] = None
    category_id: Optional[int] = None
    period: Optional[Period] = None


class RecordService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = household_id or get_current_household_id()

    def create(self, data: FinancialRecordIn) -> FinancialRecord:
        _validate_references(
            self.session,
            self.household_id,
            data.type,
            data.category_id,
            data.payer_user_id,
        )
        record = FinancialRecord(
            household_id=self.household_id,
            type=data.type,
            amount_cents=data.amount_cents,
            date=data.date,
            description=data.description,
            category_id=data.category_id,
            payer_user_id=data.payer_user_id,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def get(self, record_id: int) -> FinancialRecord:
        record = self.session.get(FinancialRecord, record_id)
        if not record or record.household_id != self.household_id:
            raise RecordNotFound("Record not found")
        return record

    def delete(self, record_id: int) -> None:
        record = self.get(record_id)
        self.session.delete(record)
        self.session.commit()

    def _filtered(self, filters: Optional[RecordFilters]):
        stmt = select(FinancialRecord).where(
            FinancialRecord.household_id == self.household_id
        )
        if not filters:
            return stmt
        if filters.query:
            stmt = stmt.where(
                FinancialRecord.description.icontains(filters.query, autoescape=True)
            )
        if filters.type:
            stmt = stmt.where(FinancialRecord.type == filters.type)
        if filters.payer_id:
            stmt = stmt.where(FinancialRecord.payer_user_id == filters.payer_id)
        if filters.category_id:
            stmt = stmt.where(FinancialRecord.category_id == filters.category_id)
        if filters.period:
            stmt = stmt.where(
                FinancialRecord.date.between(filters.period.start, filters.period.end)
            )
        return stmt

    def list(self, filters: Optional[RecordFilters] = None) -> list[FinancialRecord]:
        stmt = (
            self._filtered(filters)
            .options(joinedload(FinancialRecord.category))
            .order_by(FinancialRecord.date.desc(), FinancialRecord.id.desc())
        )
        return self.session.scalars(stmt).all()

    def page(
        self,
        filters: Optional[RecordFilters] = None,
        page: int = 1,
        per_page: int = 10,
    ) -> dict[str, object]:
        page = max(page, 1)
        per_page = min(max(per_page, 1), 100)
        stmt = self._filtered(filters)
        total = self.session.scalar(
            select(func.count()).select_from(stmt.subquery())
        ) or 0
        items = self.session.scalars(
            stmt.order_by(FinancialRecord.date.desc(), FinancialRecord.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        ).all()
        return {
            "items": items,
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": ceil(total / per_page) if total else 0,
        }

    def for_month(self, year: int, month: int) -> list[FinancialRecord]:
        return self.list(RecordFilters(period=month_period(year, month)))


class RecurringService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = household_id or get_current_household_id()

    def get(self, record_id: int) -> RecurringRecord:
        record = self.session.get(RecurringRecord, record_id)
        if not record or record.household_id != self.household_id:
            raise RecordNotFound("Recurring record not found")
        return record

    def list(self) -> list[RecurringRecord]:
        stmt = (
            select(RecurringRecord)
            .options(joinedload(RecurringRecord.category))
            .where(RecurringRecord.household_id == self.household_id)
            .order_by(RecurringRecord.start_date, RecurringRecord.id)
        )
        return self.session.scalars(stmt).all()

    def templates(self) -> list[RecurrenceTemplate]:
        return [record.to_template() for record in self.list()]

    def create(self, data: RecurringRecordIn) -> RecurringRecord:
        _validate_references(
            self.session,
            self.household_id,
            data.type,
            data.category_id,
            data.payer_user_id,
        )
        record = RecurringRecord(
            household_id=self.household_id,
            type=data.type,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            start_date=data.start_date,
            end_date=data.end_date,
            frequency=data.frequency,
            description=data.description,
            payer_user_id=data.payer_user_id,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(
            f"recurring_created: id={record.id} frequency={record.frequency.value} "
            f"start={record.start_date}"
        )
        return record

    def delete(self, record_id: int) -> None:
        record = self.get(record_id)
        self.session.delete(record)
        self.session.commit()

    def instances_for_month(self, year: int, month: int) -> list[MaterializedInstance]:
        period = month_period(year, month)
        members = MemberService(self.session, self.household_id).members()
        return materialize_month(
            self.templates(),
            period.start.year,
            period.start.month,
            members,
            household_id=self.household_id,
        )


def record_entry(record: FinancialRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "type": record.type.value,
        "amount_cents": record.amount_cents,
        "date": record.date.isoformat(),
        "description": record.description,
        "category_id": record.category_id,
        "household_id": record.household_id,
        "payer_user_id": record.payer_user_id,
        "is_recurring": False,
        "template_id": None,
    }


def instance_entry(instance: MaterializedInstance) -> dict[str, object]:
    return {
        "id": instance.id,
        "type": instance.type.value,
        "amount_cents": instance.amount_cents,
        "date": instance.date.isoformat(),
        "description": instance.description,
        "category_id": instance.category_id,
        "household_id": instance.household_id,
        "payer_user_id": instance.payer_user_id,
        "is_recurring": True,
        "template_id": instance.template_id,
    }


def _total(entries: Iterable[dict[str, object]], record_type: RecordType) -> int:
    return sum(
        int(entry["amount_cents"])
        for entry in entries
        if entry["type"] == record_type.value
    )


def build_breakdown(by_category: dict[str, int], total: int) -> list[dict]:
    if total == 0:
        return []
    items = sorted(by_category.items(), key=lambda x: x[1], reverse=True)
    return [
        {
            "name": name,
            "amount_cents": amount,
            "percent": amount / total * 100,
        }
        for name, amount in items
    ]


def savings_rate(income_cents: int, expense_cents: int) -> float:
    if income_cents <= 0:
        return 0.0
    return max(0.0, (income_cents - expense_cents) / income_cents * 100)


class MonthlySummaryService:
    """Merges stored records with recurring instances for reporting."""

    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = household_id or get_current_household_id()
        self.records = RecordService(session, self.household_id)
        self.recurring = RecurringService(session, self.household_id)
        self.members = MemberService(session, self.household_id)

    def _merge(
        self,
        records: Sequence[FinancialRecord],
        templates: Sequence[RecurrenceTemplate],
        members: Sequence[Member],
        year: int,
        month: int,
    ) -> list[dict[str, object]]:
        instances = materialize_month(
            templates, year, month, members, household_id=self.household_id
        )
        entries = [record_entry(r) for r in records]
        entries.extend(instance_entry(i) for i in instances)
        entries.sort(key=lambda e: e["date"], reverse=True)
        return entries

    def month_entries(self, year: int, month: int) -> list[dict[str, object]]:
        return self._merge(
            self.records.for_month(year, month),
            self.recurring.templates(),
            self.members.members(),
            year,
            month,
        )

    def _expenses_by_member(
        self, entries: Sequence[dict[str, object]]
    ) -> list[dict[str, object]]:
        """Expense total per household member, ignoring any payer filter."""
        members = self.members.list_all()
        totals = {member.id: 0 for member in members}
        for entry in entries:
            if entry["type"] != RecordType.expense.value:
                continue
            payer = entry["payer_user_id"]
            if payer in totals:
                totals[payer] += int(entry["amount_cents"])
        return [
            {
                "member_id": member.id,
                "display_name": member.display_name,
                "expense_cents": totals[member.id],
            }
            for member in members
        ]

    def summary(
        self, year: int, month: int, payer_id: Optional[int] = None
    ) -> dict[str, object]:
        entries = self.month_entries(year, month)
        by_member = self._expenses_by_member(entries)
        if payer_id is not None:
            entries = [e for e in entries if e["payer_user_id"] == payer_id]

        income = _total(entries, RecordType.income)
        expense = _total(entries, RecordType.expense)

        categories = CategoryService(self.session, self.household_id).list_all()
        names = {c.id: c.name for c in categories}
        by_category: dict[str, int] = {}
        for entry in entries:
            if entry["type"] != RecordType.expense.value:
                continue
            name = names.get(entry["category_id"], "Unknown")
            by_category[name] = by_category.get(name, 0) + int(entry["amount_cents"])

        return {
            "year": year,
            "month": month,
            "payer_id": payer_id,
            "income_cents": income,
            "expense_cents": expense,
            "balance_cents": income - expense,
            "recurring_count": sum(1 for e in entries if e["is_recurring"]),
            "expense_breakdown": build_breakdown(by_category, expense),
            "by_member": by_member,
            "entries": entries,
        }

    def history(
        self, months: Optional[int] = None, *, today: Optional[date] = None
    ) -> dict[str, object]:
        months = months or get_settings().report_months
        periods = trailing_months(months, today=today or local_today())
        records = self.records.list(
            RecordFilters(period=Period("report", periods[0].start, periods[-1].end))
        )
        templates = self.recurring.templates()
        members = self.members.members()

        rows: list[dict[str, object]] = []
        for period in periods:
            year, month = period.start.year, period.start.month
            entries = self._merge(
                [r for r in records if period.contains(r.date)],
                templates,
                members,
                year,
                month,
            )
            income = _total(entries, RecordType.income)
            expense = _total(entries, RecordType.expense)
            rows.append(
                {
                    "year": year,
                    "month": month,
                    "label": f"{month}/{year}",
                    "income_cents": income,
                    "expense_cents": expense,
                    "balance_cents": income - expense,
                    "savings_rate": savings_rate(income, expense),
                }
            )

        avg_income = sum(r["income_cents"] for r in rows) / len(rows)
        avg_expense = sum(r["expense_cents"] for r in rows) / len(rows)
        return {
            "months": rows,
            "averages": {
                "income_cents": avg_income,
                "expense_cents": avg_expense,
                "savings_rate": (
                    (avg_income - avg_expense) / avg_income * 100
                    if avg_income > 0
                    else 0.0
                ),
            },
        }


class CSVImportService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = household_id or get_current_household_id()

    @staticmethod
    def _resolve_category(
        categories: Sequence[Category], row: StatementRow
    ) -> Optional[int]:
        candidates = [c for c in categories if c.type == row.type]
        if not candidates:
            return None
        input_lower = (row.category or "").strip().lower()
        if not input_lower:
            return candidates[0].id

        for category in candidates:
            if category.name.lower() == input_lower:
                return category.id

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in candidates:
            dist = int(Levenshtein.distance(input_lower, category.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise ImportCategoryAmbiguous(
                    f"Category '{row.category}' is ambiguous; matches: {options}"
                )
            return best[0].id
        return candidates[0].id

    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_statement(content, default_date=local_today())
        categories = CategoryService(self.session, self.household_id).list_all()
        members = MemberService(self.session, self.household_id).list_all()
        payer_id = members[0].id if members else None
        if payer_id is None:
            errors.append("No household member to assign imported records to")

        preview_rows: list[dict[str, object]] = []
        for row in rows:
            try:
                category_id = self._resolve_category(categories, row)
            except ImportCategoryAmbiguous as exc:
                errors.append(str(exc))
                category_id = None
            else:
                if category_id is None:
                    errors.append(f"Missing {row.type.value} category")
            preview_rows.append(
                {
                    "date": row.date,
                    "type": row.type.value,
                    "amount_cents": row.amount_cents,
                    "description": row.description,
                    "category_id": category_id,
                    "payer_user_id": payer_id,
                }
            )
        return preview_rows, errors

    def commit(self, content: str) -> int:
        preview_rows, errors = self.preview(content)
        if errors:
            raise ValueError("; ".join(errors))
        for row in preview_rows:
            self.session.add(
                FinancialRecord(
                    household_id=self.household_id,
                    type=RecordType(row["type"]),
                    amount_cents=row["amount_cents"],
                    date=row["date"],
                    description=row["description"],
                    category_id=row["category_id"],
                    payer_user_id=row["payer_user_id"],
                )
            )
        self.session.commit()
        logger.info(
            f"csv_import: household={self.household_id} records={len(preview_rows)}"
        )
        return len(preview_rows)
