import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import SchemaFeatures, SessionLocal, detect_schema_features, engine
from fx_rates import parse_rate
from models import CurrencyCode
from periods import parse_iso_date
from schemas import (
    BudgetCheckIn,
    BudgetCheckOut,
    ClusterRatesIn,
    ImportResultOut,
    LedgerRowOut,
    SubmissionOut,
    TransactionRecordOut,
)
from services import (
    TRUTHY,
    CurrencyRateService,
    ImportService,
    InvalidSubmission,
    LedgerError,
    LedgerService,
    RequestContext,
    TransactionService,
    build_transaction,
)
from sheet_utils import parse_amount

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_context(request: Request) -> RequestContext:
    user_raw = (request.headers.get("X-User-Id") or "1").strip()
    try:
        user_id = int(user_raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user id") from exc
    cluster = (request.headers.get("X-Cluster") or "").strip() or None
    return RequestContext(user_id=user_id, cluster=cluster)


def get_features(request: Request) -> SchemaFeatures:
    return getattr(request.app.state, "schema_features", None) or SchemaFeatures()


@app.on_event("startup")
def startup_event():
    app.state.schema_features = detect_schema_features(engine)
    logger.info(f"schema_features: {app.state.schema_features}")


@app.exception_handler(LedgerError)
async def ledger_error_handler(_request: Request, exc: LedgerError) -> JSONResponse:
    content: dict[str, object] = {"success": False, "message": exc.message}
    if exc.debug and get_settings().expose_debug_errors:
        content["debug"] = exc.debug
    return JSONResponse(status_code=exc.status_code, content=content)


def require_csrf(token: Optional[str], context: RequestContext) -> None:
    if not validate_csrf_token(token or "", context.user_id, context.cluster):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


@app.get("/csrf-token")
def csrf_token(context: RequestContext = Depends(get_context)):
    return {"csrf_token": generate_csrf_token(context.user_id, context.cluster)}


@app.post("/transactions", response_model=SubmissionOut)
async def create_transaction(
    request: Request,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
    features: SchemaFeatures = Depends(get_features),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), context)
    # Form amounts are always entered in ETB.
    data = build_transaction(form, currency=CurrencyCode.etb, date_key="entry_date")
    return TransactionService(db, context, features).submit(data)


@app.get("/transactions/{record_id}", response_model=TransactionRecordOut)
def get_transaction(
    record_id: int,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
    features: SchemaFeatures = Depends(get_features),
):
    try:
        record = TransactionService(db, context, features).get(record_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if context.cluster and record.cluster != context.cluster:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return record


@app.post("/budget/check", response_model=BudgetCheckOut)
async def check_budget(
    request: Request,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
):
    form = await request.form()
    try:
        on_date = parse_iso_date(form.get("date"))
        year_raw = (form.get("year") or "").strip()
        data = BudgetCheckIn(
            budget_heading=(form.get("budget_heading") or "").strip(),
            amount=parse_amount(form.get("amount") or "0"),
            on_date=on_date,
            year=int(year_raw) if year_raw else on_date.year,
            use_custom_rate=(form.get("use_custom_rate") or "").lower() in TRUTHY,
            usd_to_etb=parse_rate(form.get("usd_to_etb")),
            eur_to_etb=parse_rate(form.get("eur_to_etb")),
        )
    except (ValueError, ValidationError) as exc:
        raise InvalidSubmission("Invalid budget check request", debug=str(exc)) from exc
    return TransactionService(db, context).check_budget(data)


@app.post("/transactions/import", response_model=ImportResultOut)
async def import_transactions(
    csrf_token: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
    features: SchemaFeatures = Depends(get_features),
):
    require_csrf(csrf_token, context)
    content = await file.read()
    if len(content) > get_settings().max_upload_bytes:
        raise InvalidSubmission("File size exceeds upload limit")
    return ImportService(db, context, features).import_file(file.filename or "", content)


@app.get("/ledger/{year}", response_model=list[LedgerRowOut])
def ledger_rows(
    year: int,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
):
    return LedgerService(db, context).rows_for_year(year)


@app.post("/ledger/{year}/certify")
async def certify_ledger(
    year: int,
    request: Request,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), context)
    count = LedgerService(db, context).certify(year)
    return {"success": True, "message": f"Certified {count} rows", "certified_rows": count}


@app.post("/clusters/{name}/rates")
async def set_cluster_rates(
    name: str,
    request: Request,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_context),
):
    form = await request.form()
    require_csrf(form.get("csrf_token"), context)
    try:
        data = ClusterRatesIn(
            usd_to_etb=parse_amount(form.get("usd_to_etb")),
            eur_to_etb=parse_amount(form.get("eur_to_etb")),
            custom_currency_enabled=(form.get("custom_currency_enabled") or "").lower()
            in TRUTHY,
        )
    except (ValueError, ValidationError) as exc:
        raise InvalidSubmission("Invalid currency rates", debug=str(exc)) from exc
    config = CurrencyRateService(db).set_rates(name, data)
    return {
        "success": True,
        "cluster": config.cluster,
        "currency_rates": config.rates.as_dict(),
        "custom_currency_enabled": config.custom_rates_enabled,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
