import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, session_scope
from models import Category, HouseholdMember, RecordType, RecurringRecord
from periods import resolve_range
from schemas import (
    CategoryIn,
    FinancialRecordIn,
    MemberIn,
    MemberRename,
    RecurringRecordIn,
)
from services import (
    CategoryService,
    CSVImportService,
    MemberService,
    MonthlySummaryService,
    RecordFilters,
    RecordNotFound,
    RecordService,
    RecurringService,
    instance_entry,
    record_entry,
    seed_defaults,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Balance Together")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        seed_defaults(session)
    logger.info("startup: defaults seeded")


def _optional_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def filters_from_request(request: Request) -> RecordFilters:
    params = request.query_params
    record_type = None
    if params.get("type"):
        try:
            record_type = RecordType(params["type"].lower())
        except ValueError:
            record_type = None
    try:
        period = resolve_range(params.get("date_from"), params.get("date_to"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RecordFilters(
        query=params.get("q") or None,
        type=record_type,
        payer_id=_optional_int(params.get("payer_id")),
        category_id=_optional_int(params.get("category_id")),
        period=period,
    )


def member_payload(member: HouseholdMember) -> dict[str, object]:
    return {
        "id": member.id,
        "display_name": member.display_name,
        "email": member.email,
    }


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "is_system": category.is_system,
    }


def recurring_payload(record: RecurringRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "type": record.type.value,
        "amount_cents": record.amount_cents,
        "category_id": record.category_id,
        "start_date": record.start_date.isoformat(),
        "end_date": record.end_date.isoformat() if record.end_date else None,
        "frequency": record.frequency.value,
        "description": record.description,
        "payer_user_id": record.payer_user_id,
    }


@app.get("/api/users")
def list_users(db: Session = Depends(get_db)):
    return [member_payload(m) for m in MemberService(db).list_all()]


@app.post("/api/users", status_code=201)
def create_user(data: MemberIn, db: Session = Depends(get_db)):
    return member_payload(MemberService(db).create(data))


@app.post("/api/users/{member_id}")
def rename_user(member_id: int, data: MemberRename, db: Session = Depends(get_db)):
    try:
        member = MemberService(db).rename(member_id, data.display_name)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return member_payload(member)


@app.get("/api/categories")
def list_categories(request: Request, db: Session = Depends(get_db)):
    record_type = None
    type_param = request.query_params.get("type")
    if type_param:
        try:
            record_type = RecordType(type_param.lower())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [category_payload(c) for c in CategoryService(db).list_all(record_type)]


@app.post("/api/categories", status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_payload(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/financial-records")
def list_records(request: Request, db: Session = Depends(get_db)):
    filters = filters_from_request(request)
    page = _optional_int(request.query_params.get("page")) or 1
    per_page = _optional_int(request.query_params.get("per_page")) or 10
    result = RecordService(db).page(filters, page=page, per_page=per_page)
    result["items"] = [record_entry(r) for r in result["items"]]
    return result


@app.post("/api/financial-records", status_code=201)
def create_record(data: FinancialRecordIn, db: Session = Depends(get_db)):
    try:
        record = RecordService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return record_entry(record)


@app.delete("/api/financial-records/{record_id}", status_code=204)
def delete_record(record_id: int, db: Session = Depends(get_db)):
    try:
        RecordService(db).delete(record_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/recurring-records")
def list_recurring(db: Session = Depends(get_db)):
    return [recurring_payload(r) for r in RecurringService(db).list()]


@app.post("/api/recurring-records", status_code=201)
def create_recurring(data: RecurringRecordIn, db: Session = Depends(get_db)):
    try:
        record = RecurringService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return recurring_payload(record)


@app.delete("/api/recurring-records/{record_id}", status_code=204)
def delete_recurring(record_id: int, db: Session = Depends(get_db)):
    try:
        RecurringService(db).delete(record_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/months/{year}/{month}")
def month_summary(
    year: int, month: int, request: Request, db: Session = Depends(get_db)
):
    payer_id = _optional_int(request.query_params.get("payer_id"))
    try:
        return MonthlySummaryService(db).summary(year, month, payer_id=payer_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/months/{year}/{month}/recurring")
def month_recurring(year: int, month: int, db: Session = Depends(get_db)):
    try:
        instances = RecurringService(db).instances_for_month(year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [instance_entry(i) for i in instances]


@app.get("/api/reports/monthly")
def monthly_report(request: Request, db: Session = Depends(get_db)):
    months = _optional_int(request.query_params.get("months"))
    today_param = request.query_params.get("today")
    try:
        today = date.fromisoformat(today_param) if today_param else None
        return MonthlySummaryService(db).history(months, today=today)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/import/preview")
async def import_preview(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = (await file.read()).decode("utf-8")
    rows, errors = CSVImportService(db).preview(content)
    for row in rows:
        row["date"] = row["date"].isoformat()
    return {"rows": rows, "errors": errors}


@app.post("/api/import/commit")
async def import_commit(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = (await file.read()).decode("utf-8")
    try:
        count = CSVImportService(db).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"imported": count}
