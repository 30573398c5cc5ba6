import logging
from dataclasses import asdict
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from config import get_settings
from csrf import issue_token, verify_token
from database import get_db
from errors import (
    ExternalStoreError,
    LedgerError,
    NotFoundError,
    PartialBatchFailure,
)
from invoice_cycle import current_month_key
from models import Category, RecordStatus, TransactionKind
from scheduler import SchedulerManager
from schemas import (
    AssignMemberIn,
    BulkDeleteIn,
    BulkReassignIn,
    CardIn,
    ClosingOverrideIn,
    ImportCommitIn,
    InstallmentPreviewOut,
    LedgerRecordIn,
    LedgerRecordOut,
    LedgerRecordUpdate,
    LedgerView,
    MemberIn,
    RecurringTemplateIn,
    SeriesOptions,
    StatusIn,
)
from services import (
    BulkLedgerService,
    BulkResult,
    CardService,
    InvoiceService,
    LedgerFilters,
    LedgerService,
    MemberAssignmentService,
    MemberService,
    RecurringTemplateService,
    StatementImportService,
)
from store import SystemClock

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Household Ledger")


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def require_csrf(x_csrf_token: Optional[str] = Header(default=None)) -> None:
    if not verify_token(x_csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def raise_http(exc: LedgerError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, PartialBatchFailure):
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "succeeded": exc.succeeded,
                "failed": {str(k): v for k, v in exc.failed.items()},
            },
        ) from exc
    if isinstance(exc, ExternalStoreError):
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> LedgerFilters:
    params = request.query_params
    kind = None
    if params.get("kind"):
        try:
            kind = TransactionKind(params["kind"])
        except ValueError:
            kind = None
    category = None
    if params.get("category"):
        try:
            category = Category(params["category"])
        except ValueError:
            category = None
    status = None
    if params.get("status"):
        try:
            status = RecordStatus(params["status"])
        except ValueError:
            status = None
    card_id = params.get("card_id")
    member_id = params.get("member_id")
    return LedgerFilters(
        kind=kind,
        category=category,
        card_id=int(card_id) if card_id and card_id.isdigit() else None,
        member_id=int(member_id) if member_id and member_id.isdigit() else None,
        status=status,
        query=params.get("q"),
    )


def record_out(record) -> dict:
    return LedgerRecordOut.model_validate(record).model_dump(mode="json")


def bulk_out(result: BulkResult) -> dict:
    payload = {
        "requested": result.requested,
        "succeeded": result.succeeded,
        "failed": {str(k): v for k, v in result.failed.items()},
    }
    if result.selection is not None:
        payload["selection"] = asdict(result.selection)
    return payload


@app.get("/api/csrf-token")
def csrf_token():
    return {"token": issue_token()}


@app.get("/api/cards")
def list_cards(db: Session = Depends(get_db)):
    return [
        {
            "id": card.id,
            "name": card.name,
            "limit_cents": card.limit_cents,
            "closing_day": card.closing_day,
            "due_day": card.due_day,
        }
        for card in CardService(db).list()
    ]


@app.post("/api/cards", status_code=201, dependencies=[Depends(require_csrf)])
def create_card(payload: CardIn, db: Session = Depends(get_db)):
    try:
        card = CardService(db).create(payload)
    except LedgerError as exc:
        raise_http(exc)
    return {"id": card.id}


@app.put("/api/cards/{card_id}", dependencies=[Depends(require_csrf)])
def update_card(card_id: int, payload: CardIn, db: Session = Depends(get_db)):
    try:
        card = CardService(db).update(card_id, payload)
    except LedgerError as exc:
        raise_http(exc)
    return {"id": card.id}


@app.delete("/api/cards/{card_id}", status_code=204, dependencies=[Depends(require_csrf)])
def delete_card(card_id: int, db: Session = Depends(get_db)):
    try:
        CardService(db).delete(card_id)
    except LedgerError as exc:
        raise_http(exc)
    return Response(status_code=204)


@app.put("/api/cards/{card_id}/closing-overrides", dependencies=[Depends(require_csrf)])
def set_closing_override(
    card_id: int, payload: ClosingOverrideIn, db: Session = Depends(get_db)
):
    try:
        override = CardService(db).set_closing_override(card_id, payload)
    except LedgerError as exc:
        raise_http(exc)
    return {"period": override.period, "closing_day": override.closing_day}


@app.delete(
    "/api/cards/{card_id}/closing-overrides/{period}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def remove_closing_override(card_id: int, period: str, db: Session = Depends(get_db)):
    try:
        CardService(db).remove_closing_override(card_id, period)
    except LedgerError as exc:
        raise_http(exc)
    return Response(status_code=204)


@app.get("/api/members")
def list_members(db: Session = Depends(get_db)):
    return [
        {"id": m.id, "name": m.name, "card_id": m.card_id}
        for m in MemberService(db).list()
    ]


@app.post("/api/members", status_code=201, dependencies=[Depends(require_csrf)])
def create_member(payload: MemberIn, db: Session = Depends(get_db)):
    try:
        member = MemberService(db).create(payload)
    except LedgerError as exc:
        raise_http(exc)
    return {"id": member.id}


@app.delete("/api/members/{member_id}", status_code=204, dependencies=[Depends(require_csrf)])
def delete_member(member_id: int, db: Session = Depends(get_db)):
    try:
        MemberService(db).delete(member_id)
    except LedgerError as exc:
        raise_http(exc)
    return Response(status_code=204)


@app.get("/api/records")
def list_records(
    request: Request,
    period: Optional[str] = None,
    view: LedgerView = LedgerView.period,
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    service = LedgerService(db)
    try:
        if view == LedgerView.history:
            records = service.history(filters)
        else:
            period = period or current_month_key(SystemClock().today())
            records = service.list_for_period(period, filters)
    except LedgerError as exc:
        raise_http(exc)
    return {"view": view.value, "period": period, "items": [record_out(r) for r in records]}


@app.get("/api/records/export.csv")
def export_records_endpoint(
    request: Request, period: Optional[str] = None, db: Session = Depends(get_db)
):
    period = period or current_month_key(SystemClock().today())
    try:
        csv_text = LedgerService(db).export(period, filters_from_request(request))
    except LedgerError as exc:
        raise_http(exc)
    filename = f"ledger_{period}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/records", status_code=201, dependencies=[Depends(require_csrf)])
def create_record(
    record: LedgerRecordIn,
    options: Optional[SeriesOptions] = None,
    db: Session = Depends(get_db),
):
    service = LedgerService(db)
    try:
        if record.installment_count > 1:
            created = service.create_series(record, options)
        else:
            created = [service.create(record, options)]
    except LedgerError as exc:
        raise_http(exc)
    return {"items": [record_out(r) for r in created]}


@app.post("/api/records/bulk-delete", dependencies=[Depends(require_csrf)])
def bulk_delete(payload: BulkDeleteIn, db: Session = Depends(get_db)):
    try:
        result = BulkLedgerService(db).bulk_delete(payload.ids, payload.view)
    except LedgerError as exc:
        raise_http(exc)
    return bulk_out(result)


@app.post("/api/records/bulk-delete/preview")
def bulk_delete_preview(payload: BulkDeleteIn, db: Session = Depends(get_db)):
    service = BulkLedgerService(db)
    if payload.view != LedgerView.history:
        return {"ids": payload.ids, "visible_count": len(payload.ids), "cascade_count": len(payload.ids)}
    try:
        expansion = service.expand_history_selection(payload.ids)
    except LedgerError as exc:
        raise_http(exc)
    return asdict(expansion)


@app.post("/api/records/bulk-reassign", dependencies=[Depends(require_csrf)])
def bulk_reassign(payload: BulkReassignIn, db: Session = Depends(get_db)):
    try:
        result = BulkLedgerService(db).bulk_reassign_member(payload.ids, payload.member_id)
    except LedgerError as exc:
        raise_http(exc)
    return bulk_out(result)


@app.get("/api/records/{record_id}")
def get_record(record_id: int, db: Session = Depends(get_db)):
    try:
        record = LedgerService(db).get(record_id)
    except LedgerError as exc:
        raise_http(exc)
    return record_out(record)


@app.patch("/api/records/{record_id}", dependencies=[Depends(require_csrf)])
def update_record(
    record_id: int, payload: LedgerRecordUpdate, db: Session = Depends(get_db)
):
    try:
        record = LedgerService(db).update(record_id, payload)
    except LedgerError as exc:
        raise_http(exc)
    return record_out(record)


@app.post("/api/records/{record_id}/status", dependencies=[Depends(require_csrf)])
def set_record_status(record_id: int, payload: StatusIn, db: Session = Depends(get_db)):
    try:
        record = LedgerService(db).set_status(record_id, payload.status)
    except LedgerError as exc:
        raise_http(exc)
    return record_out(record)


@app.post("/api/records/{record_id}/member", dependencies=[Depends(require_csrf)])
def assign_record_member(
    record_id: int, payload: AssignMemberIn, db: Session = Depends(get_db)
):
    try:
        updated = MemberAssignmentService(db).assign_member(record_id, payload.member_id)
    except LedgerError as exc:
        raise_http(exc)
    return {"updated": updated}


@app.delete("/api/records/{record_id}", dependencies=[Depends(require_csrf)])
def delete_record(record_id: int, cascade: bool = False, db: Session = Depends(get_db)):
    try:
        deleted = LedgerService(db).delete(record_id, cascade=cascade)
    except LedgerError as exc:
        raise_http(exc)
    return {"deleted": deleted}


@app.get("/api/records/{record_id}/siblings")
def record_siblings(record_id: int, db: Session = Depends(get_db)):
    service = LedgerService(db)
    try:
        record = service.get(record_id)
    except LedgerError as exc:
        raise_http(exc)
    if not record.is_installment or not record.installment_group_id:
        return {"items": [record_out(record)]}
    return {"items": [record_out(r) for r in service.siblings(record.installment_group_id)]}


@app.get("/api/records/{record_id}/installment-preview")
def installment_preview(
    record_id: int,
    period: Optional[str] = None,
    use_purchase_date_logic: bool = True,
    db: Session = Depends(get_db),
):
    try:
        preview = LedgerService(db).installment_preview(
            record_id, period, use_purchase_date_logic
        )
    except LedgerError as exc:
        raise_http(exc)
    return InstallmentPreviewOut(**asdict(preview))


@app.post("/api/import/preview", dependencies=[Depends(require_csrf)])
async def import_preview(
    file: UploadFile = File(...),
    reference_period: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    content = (await file.read()).decode("utf-8-sig", errors="replace")
    try:
        statement = StatementImportService(db).preview(content, reference_period)
    except LedgerError as exc:
        raise_http(exc)
    return {
        "drafts": [draft.model_dump(mode="json") for draft in statement.drafts],
        "discarded": statement.discarded,
        "merged_duplicates": statement.merged_duplicates,
    }


@app.post("/api/import/commit", status_code=201, dependencies=[Depends(require_csrf)])
def import_commit(payload: ImportCommitIn, db: Session = Depends(get_db)):
    try:
        created = StatementImportService(db).commit(payload.drafts, payload.options)
    except LedgerError as exc:
        raise_http(exc)
    return {"created": len(created), "ids": [r.id for r in created]}


@app.get("/api/invoices/{card_id}/{period}")
def invoice_summary(card_id: int, period: str, db: Session = Depends(get_db)):
    try:
        summary = InvoiceService(db).summary(card_id, period)
    except LedgerError as exc:
        raise_http(exc)
    return {
        "card_id": summary.card_id,
        "card_name": summary.card_name,
        "period": summary.period,
        "total_cents": summary.total_cents,
        "by_member": [asdict(item) for item in summary.by_member],
        "items": [record_out(r) for r in summary.records],
    }


@app.get("/api/summary/{period}")
def month_summary(period: str, db: Session = Depends(get_db)):
    try:
        summary = InvoiceService(db).month_summary(period)
    except LedgerError as exc:
        raise_http(exc)
    return {
        "period": summary.period,
        "income_cents": summary.income_cents,
        "fixed_expense_cents": summary.fixed_expense_cents,
        "variable_expense_cents": summary.variable_expense_cents,
        "card_total_cents": summary.card_total_cents,
        "balance_cents": summary.balance_cents,
        "card_invoices": [asdict(item) for item in summary.card_invoices],
    }


@app.get("/api/recurring")
def list_recurring(db: Session = Depends(get_db)):
    return [
        {
            "id": t.id,
            "description": t.description,
            "amount_cents": t.amount_cents,
            "category": t.category.value,
            "kind": t.kind.value,
            "day_of_month": t.day_of_month,
            "payment_method": t.payment_method.value,
            "card_id": t.card_id,
            "active": t.active,
            "start_period": t.start_period,
            "end_period": t.end_period,
        }
        for t in RecurringTemplateService(db).list()
    ]


@app.post("/api/recurring", status_code=201, dependencies=[Depends(require_csrf)])
def create_recurring(payload: RecurringTemplateIn, db: Session = Depends(get_db)):
    try:
        template = RecurringTemplateService(db).create(payload)
    except LedgerError as exc:
        raise_http(exc)
    return {"id": template.id}


@app.post("/api/recurring/materialize", dependencies=[Depends(require_csrf)])
def materialize_recurring(period: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        result = RecurringTemplateService(db).materialize(period)
    except LedgerError as exc:
        raise_http(exc)
    return {
        "period": result.period,
        "created": [r.id for r in result.created],
        "skipped": result.skipped,
        "failed": {str(k): v for k, v in result.failed.items()},
    }


@app.put("/api/recurring/{template_id}", dependencies=[Depends(require_csrf)])
def update_recurring(
    template_id: int, payload: RecurringTemplateIn, db: Session = Depends(get_db)
):
    try:
        template = RecurringTemplateService(db).update(template_id, payload)
    except LedgerError as exc:
        raise_http(exc)
    return {"id": template.id}


@app.post("/api/recurring/{template_id}/toggle", dependencies=[Depends(require_csrf)])
def toggle_recurring(template_id: int, db: Session = Depends(get_db)):
    service = RecurringTemplateService(db)
    try:
        template = service.get(template_id)
        template = service.toggle_active(template_id, not template.active)
    except LedgerError as exc:
        raise_http(exc)
    return {"id": template.id, "active": template.active}


@app.delete("/api/recurring/{template_id}", status_code=204, dependencies=[Depends(require_csrf)])
def delete_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        RecurringTemplateService(db).delete(template_id)
    except LedgerError as exc:
        raise_http(exc)
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8100, reload=False, log_level="info")


if __name__ == "__main__":
    main()
