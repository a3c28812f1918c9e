from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from csv_utils import IMPORT_PREFIX, parse_amount, parse_statement
from database import Base
from models import Category, FinancialRecord, HouseholdMember, RecordType
from schemas import CategoryIn
from services import (
    CategoryService,
    CSVImportService,
    ImportCategoryAmbiguous,
    MemberService,
    seed_defaults,
)


def _session(seed: bool = True) -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    if seed:
        seed_defaults(session)
        session.commit()
    return session


def test_parse_amount_accepts_signed_values() -> None:
    assert parse_amount("-12,50", allow_negative=True) == -1250
    assert parse_amount("1.234,56") == 123456
    with pytest.raises(ValueError):
        parse_amount("-3")
    with pytest.raises(ValueError):
        parse_amount("abc")


def test_parse_statement_uses_sign_for_type() -> None:
    content = (
        "Date,Amount,Description\n"
        "2024-02-01,-45.10,Supermarket\n"
        "01/02/2024,1500,Salary\n"
        ",-3.00,Coffee\n"
    )
    rows, errors = parse_statement(content, default_date=date(2024, 2, 20))

    assert errors == []
    assert [r.type for r in rows] == [
        RecordType.expense,
        RecordType.income,
        RecordType.expense,
    ]
    assert [r.amount_cents for r in rows] == [4510, 150000, 300]
    assert rows[1].date == date(2024, 2, 1)
    assert rows[2].date == date(2024, 2, 20)
    assert rows[0].description == f"{IMPORT_PREFIX}Supermarket"


def test_parse_statement_reports_bad_rows() -> None:
    content = "Date,Amount,Description\n2024-02-01,oops,Broken\n2024-13-01,1,Bad date\n"
    rows, errors = parse_statement(content, default_date=date(2024, 2, 20))
    assert rows == []
    assert errors[0].startswith("Row 1:")
    assert errors[1].startswith("Row 2:")


@pytest.mark.parametrize("raw", ["inf", "-Infinity", "NaN", "sNaN", "1e40"])
def test_non_finite_amounts_become_row_errors(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw, allow_negative=True)

    content = f"Date,Amount,Description\n2024-01-01,{raw},Broken\n"
    rows, errors = parse_statement(content, default_date=date(2024, 1, 1))
    assert rows == []
    assert errors == ["Row 1: Invalid amount"]


def test_preview_assigns_default_category_and_first_member() -> None:
    session = _session()
    first_member = MemberService(session).list_all()[0]
    content = (
        "Date,Amount,Description\n"
        "2024-02-01,-45.10,Supermarket\n"
        "2024-02-02,900,Refund\n"
    )

    rows, errors = CSVImportService(session).preview(content)

    assert errors == []
    expense_default = CategoryService(session).list_all(RecordType.expense)[0]
    income_default = CategoryService(session).list_all(RecordType.income)[0]
    assert rows[0]["category_id"] == expense_default.id
    assert rows[1]["category_id"] == income_default.id
    assert {r["payer_user_id"] for r in rows} == {first_member.id}


def test_preview_matches_category_column_fuzzily() -> None:
    session = _session()
    groceries_id = session.scalar(
        select(Category.id).where(Category.name == "Groceries")
    )
    content = (
        "Date,Amount,Description,Category\n"
        "2024-02-01,-45.10,Market,groceries\n"
        "2024-02-02,-12.00,Market,Grocerie\n"
    )
    rows, errors = CSVImportService(session).preview(content)
    assert errors == []
    assert [r["category_id"] for r in rows] == [groceries_id, groceries_id]


def test_preview_flags_ambiguous_category() -> None:
    session = _session(seed=False)
    session.add(HouseholdMember(household_id=1, display_name="Ana", position=0))
    session.commit()
    categories = CategoryService(session)
    categories.create(CategoryIn(name="Food", type=RecordType.expense))
    categories.create(CategoryIn(name="Fool", type=RecordType.expense))

    content = "Date,Amount,Description,Category\n2024-02-01,-1.00,Test,Foob\n"
    rows, errors = CSVImportService(session).preview(content)
    assert rows[0]["category_id"] is None
    assert "ambiguous" in errors[0]

    with pytest.raises(ImportCategoryAmbiguous):
        CSVImportService._resolve_category(categories.list_all(), _row("Foob"))


def _row(category: str):
    rows, _ = parse_statement(
        f"Date,Amount,Description,Category\n2024-02-01,-1.00,Test,{category}\n",
        default_date=date(2024, 2, 1),
    )
    return rows[0]


def test_commit_creates_manual_records_only() -> None:
    session = _session()
    content = (
        "Date,Amount,Description\n"
        "2024-02-01,-45.10,Supermarket\n"
        "2024-02-02,900,Refund\n"
    )

    count = CSVImportService(session).commit(content)

    assert count == 2
    records = session.scalars(
        select(FinancialRecord).order_by(FinancialRecord.date)
    ).all()
    assert [r.description for r in records] == [
        "Imported: Supermarket",
        "Imported: Refund",
    ]
    assert [r.amount_cents for r in records] == [4510, 90000]


def test_commit_refuses_when_preview_has_errors() -> None:
    session = _session()
    content = (
        "Date,Amount,Description\n2024-02-01,oops,Broken\n2024-02-02,-1,Fine\n"
    )
    with pytest.raises(ValueError, match="Row 1"):
        CSVImportService(session).commit(content)
    assert session.scalar(select(func.count(FinancialRecord.id))) == 0


def test_missing_date_falls_back_to_local_today(monkeypatch) -> None:
    monkeypatch.setattr("services.local_today", lambda: date(2024, 6, 9))
    session = _session()
    rows, errors = CSVImportService(session).preview(
        "Date,Amount,Description\n,-5,Parking\n"
    )
    assert errors == []
    assert rows[0]["date"] == date(2024, 6, 9)
