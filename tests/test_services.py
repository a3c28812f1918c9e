from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, Frequency, HouseholdMember, RecordType
from periods import Period
from schemas import CategoryIn, FinancialRecordIn, MemberIn, RecurringRecordIn
from services import (
    CategoryService,
    MemberService,
    RecordFilters,
    RecordNotFound,
    RecordService,
    RecurringService,
    seed_defaults,
)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _category(session: Session, name: str) -> Category:
    return session.scalar(select(Category).where(Category.name == name))


def test_seed_defaults_is_idempotent() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        seed_defaults(session)
        session.commit()

        members = MemberService(session).list_all()
        assert [m.display_name for m in members] == ["Member 1", "Member 2"]
        count = session.scalar(select(func.count(Category.id)))
        assert count == 8
        assert all(c.is_system for c in CategoryService(session).list_all())


def test_member_create_appends_and_rename() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        session.commit()
        service = MemberService(session)

        third = service.create(MemberIn(display_name="  Carla "))
        assert third.display_name == "Carla"
        assert [m.id for m in service.members()][-1] == third.id

        first = service.list_all()[0]
        service.rename(first.id, "Ana")
        assert service.get(first.id).display_name == "Ana"

        with pytest.raises(ValueError):
            service.rename(first.id, "   ")
        with pytest.raises(RecordNotFound):
            service.rename(999, "Ghost")
        with pytest.raises(ValueError, match="empty"):
            service.create(MemberIn(display_name="   "))
        assert len(service.list_all()) == 3


def test_category_create_rejects_duplicates_case_insensitive() -> None:
    with Session(_engine()) as session:
        service = CategoryService(session)
        service.create(CategoryIn(name="Pets", type=RecordType.expense))
        with pytest.raises(ValueError):
            service.create(CategoryIn(name="pets", type=RecordType.expense))
        service.create(CategoryIn(name="Pets", type=RecordType.income))

        expense_names = [c.name for c in service.list_all(RecordType.expense)]
        assert expense_names == ["Pets"]

        with pytest.raises(ValueError, match="empty"):
            service.create(CategoryIn(name="  ", type=RecordType.expense))
        assert len(service.list_all()) == 2


def test_category_delete_rules() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        session.commit()
        categories = CategoryService(session)
        payer = MemberService(session).list_all()[0]

        with pytest.raises(ValueError, match="System"):
            categories.delete(_category(session, "Groceries").id)

        unused = categories.create(CategoryIn(name="Gifts", type=RecordType.expense))
        categories.delete(unused.id)
        assert _category(session, "Gifts") is None

        used = categories.create(CategoryIn(name="Pets", type=RecordType.expense))
        RecordService(session).create(
            FinancialRecordIn(
                type=RecordType.expense,
                amount_cents=1_500,
                date=date(2024, 2, 1),
                description="Vet",
                category_id=used.id,
                payer_user_id=payer.id,
            )
        )
        with pytest.raises(ValueError, match="in use"):
            categories.delete(used.id)

        with pytest.raises(RecordNotFound):
            categories.delete(12345)


def test_record_create_validates_references() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        session.commit()
        payer = MemberService(session).list_all()[0]
        salary = _category(session, "Salary")
        records = RecordService(session)

        with pytest.raises(ValueError, match="type mismatch"):
            records.create(
                FinancialRecordIn(
                    type=RecordType.expense,
                    amount_cents=100,
                    date=date(2024, 1, 1),
                    category_id=salary.id,
                    payer_user_id=payer.id,
                )
            )
        with pytest.raises(ValueError, match="Payer"):
            records.create(
                FinancialRecordIn(
                    type=RecordType.income,
                    amount_cents=100,
                    date=date(2024, 1, 1),
                    category_id=salary.id,
                    payer_user_id=999,
                )
            )
        with pytest.raises(ValueError, match="Category not found"):
            records.create(
                FinancialRecordIn(
                    type=RecordType.income,
                    amount_cents=100,
                    date=date(2024, 1, 1),
                    category_id=999,
                    payer_user_id=payer.id,
                )
            )


def test_record_filters_and_pagination() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        session.commit()
        ana, bruno = MemberService(session).list_all()
        groceries = _category(session, "Groceries")
        salary = _category(session, "Salary")
        records = RecordService(session)

        for day in range(1, 13):
            records.create(
                FinancialRecordIn(
                    type=RecordType.expense,
                    amount_cents=1_000 + day,
                    date=date(2024, 3, day),
                    description=f"Market {day}",
                    category_id=groceries.id,
                    payer_user_id=ana.id if day % 2 else bruno.id,
                )
            )
        records.create(
            FinancialRecordIn(
                type=RecordType.income,
                amount_cents=250_000,
                date=date(2024, 4, 1),
                description="April salary",
                category_id=salary.id,
                payer_user_id=bruno.id,
            )
        )

        everything = records.list()
        assert len(everything) == 13
        assert everything[0].description == "April salary"

        assert len(records.list(RecordFilters(query="market 1"))) == 4
        assert len(records.list(RecordFilters(type=RecordType.income))) == 1
        assert len(records.list(RecordFilters(payer_id=ana.id))) == 6
        assert len(records.list(RecordFilters(category_id=salary.id))) == 1
        march_first_week = Period("custom", date(2024, 3, 1), date(2024, 3, 7))
        assert len(records.list(RecordFilters(period=march_first_week))) == 7
        assert len(records.for_month(2024, 3)) == 12

        first_page = records.page(None, page=1, per_page=10)
        assert first_page["total"] == 13
        assert first_page["total_pages"] == 2
        assert len(first_page["items"]) == 10
        second_page = records.page(None, page=2, per_page=10)
        assert len(second_page["items"]) == 3

        target_id = everything[-1].id
        records.delete(target_id)
        with pytest.raises(RecordNotFound):
            records.get(target_id)


def test_recurring_store_feeds_materializer() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        session.commit()
        ana, bruno = MemberService(session).list_all()
        rent = _category(session, "Rent/Mortgage")
        recurring = RecurringService(session)

        record = recurring.create(
            RecurringRecordIn(
                type=RecordType.expense,
                amount_cents=80_000,
                category_id=rent.id,
                start_date=date(2024, 1, 31),
                frequency=Frequency.monthly_alternating,
                description="Rent",
                payer_user_id=ana.id,
            )
        )
        template = recurring.templates()[0]
        assert template.id == record.id
        assert template.frequency == Frequency.monthly_alternating

        (february,) = recurring.instances_for_month(2024, 2)
        assert february.date == date(2024, 2, 29)
        assert february.payer_user_id == bruno.id
        assert february.id < 0

        (march,) = recurring.instances_for_month(2024, 3)
        assert march.payer_user_id == ana.id

        assert recurring.instances_for_month(2023, 12) == []
        with pytest.raises(ValueError):
            recurring.instances_for_month(2024, 13)

        record_id = record.id
        recurring.delete(record_id)
        assert recurring.list() == []
        with pytest.raises(RecordNotFound):
            recurring.get(record_id)


def test_recurring_schema_rejects_inverted_range() -> None:
    with pytest.raises(ValueError):
        RecurringRecordIn(
            type=RecordType.expense,
            amount_cents=100,
            category_id=1,
            start_date=date(2024, 5, 1),
            end_date=date(2024, 4, 1),
            payer_user_id=1,
        )


def test_members_are_scoped_to_household() -> None:
    with Session(_engine()) as session:
        seed_defaults(session)
        seed_defaults(session, household_id=2)
        session.commit()
        total = session.scalar(select(func.count(HouseholdMember.id)))
        assert total == 4
        assert len(MemberService(session, household_id=2).list_all()) == 2
