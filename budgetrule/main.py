import logging
from datetime import date, datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine

from budgetrule.budget_config import DEFAULT_CONFIGURATION, Configuration, ConfigurationService
from budgetrule.budget_engine import (
    AggregateResult,
    aggregate_by_month,
    aggregate_transactions,
    expense_category_totals,
    filter_window,
    monthly_cash_flow,
    sort_recent_first,
)
from budgetrule.category_resolver import (
    CategorySuggestion,
    TransactionDraft,
    request_suggestion,
    submit_transaction,
)
from budgetrule.errors import PersistenceError, SuggestionUnavailable, ValidationError
from budgetrule.settings import load_settings
from budgetrule.storage import TransactionStore
from budgetrule.suggestion_client import ChatCompletionSuggester
from budgetrule.threshold_alerts import (
    BudgetAlert,
    LoggingAlertSink,
    dispatch_alerts,
    evaluate_thresholds,
)

settings = load_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args)
store = TransactionStore(engine)
suggester = ChatCompletionSuggester.from_settings(settings)
alert_sink = LoggingAlertSink()


@app.on_event("startup")
def init_db() -> None:
    store.create_schema()


def get_store() -> TransactionStore:
    return store


def get_suggester() -> ChatCompletionSuggester:
    return suggester


class TransactionPayload(BaseModel):
    date: date
    description: str
    amount: Decimal
    type: str
    category: str | None = None
    suggested_category: str | None = None
    accept_suggestion: bool = False


class TransactionResponse(BaseModel):
    id: int
    owner_id: str
    date: date
    description: str
    amount: Decimal
    type: str
    category: str


class SuggestionPayload(BaseModel):
    description: str
    amount: Decimal


class SuggestionResponse(BaseModel):
    category: str
    explanation: str


class ConfigurationPayload(BaseModel):
    needs_percentage: Decimal
    wants_percentage: Decimal
    savings_percentage: Decimal


class ConfigurationResponse(ConfigurationPayload):
    is_default: bool = False


class ChartEntryResponse(BaseModel):
    category: str
    total: Decimal


class BudgetAlertResponse(BaseModel):
    category: str
    actual_percentage: Decimal
    allowed_percentage: Decimal
    message: str


class AggregateResponse(BaseModel):
    total_income: Decimal
    total_expenses: Decimal
    net_savings: Decimal
    needs_total: Decimal
    wants_total: Decimal
    savings_total: Decimal
    chart_data: list[ChartEntryResponse]


class SummaryResponse(AggregateResponse):
    start_date: date | None = None
    end_date: date | None = None
    transaction_count: int
    configuration: ConfigurationPayload
    alerts: list[BudgetAlertResponse]


class MonthlyReportEntry(BaseModel):
    month: str
    income: Decimal
    expense: Decimal
    summary: AggregateResponse


class CategoryTotalResponse(BaseModel):
    category: str
    total: Decimal


def get_owner_id(x_user_id: str | None) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity.")
    return x_user_id.strip()


def parse_month_value(value: str) -> tuple[date, date]:
    try:
        start = datetime.strptime(value, "%Y-%m").date()
    except ValueError as exc:
        raise ValidationError("Invalid month format. Use YYYY-MM.") from exc
    if start.month == 12:
        next_month = date(start.year + 1, 1, 1)
    else:
        next_month = date(start.year, start.month + 1, 1)
    return start, date.fromordinal(next_month.toordinal() - 1)


def to_aggregate_response(result: AggregateResult) -> AggregateResponse:
    return AggregateResponse(
        total_income=result.total_income,
        total_expenses=result.total_expenses,
        net_savings=result.net_savings,
        needs_total=result.needs_total,
        wants_total=result.wants_total,
        savings_total=result.savings_total,
        chart_data=[
            ChartEntryResponse(category=entry.category, total=entry.total)
            for entry in result.chart_data
        ],
    )


def to_alert_response(alert: BudgetAlert) -> BudgetAlertResponse:
    return BudgetAlertResponse(
        category=alert.category,
        actual_percentage=alert.actual_percentage,
        allowed_percentage=alert.allowed_percentage,
        message=alert.message,
    )


def load_transactions(repository: TransactionStore, owner_id: str):
    try:
        return repository.list_transactions(owner_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> TransactionResponse:
    owner_id = get_owner_id(x_user_id)
    draft = TransactionDraft(
        description=payload.description,
        amount=payload.amount,
        type=payload.type,
        date=payload.date,
        category=payload.category,
    )
    suggestion = None
    if payload.suggested_category:
        suggestion = CategorySuggestion(category=payload.suggested_category, explanation="")
    try:
        record = submit_transaction(
            repository,
            owner_id,
            draft,
            suggestion=suggestion,
            accept_suggestion=payload.accept_suggestion,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return TransactionResponse(
        id=record.id,
        owner_id=owner_id,
        date=record.date,
        description=record.description,
        amount=record.amount,
        type=record.type,
        category=record.category,
    )


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> list[TransactionResponse]:
    owner_id = get_owner_id(x_user_id)
    rows = sort_recent_first(load_transactions(repository, owner_id))
    return [
        TransactionResponse(
            id=row.id,
            owner_id=owner_id,
            date=row.date,
            description=row.description,
            amount=row.amount,
            type=row.type,
            category=row.category,
        )
        for row in rows
    ]


@app.post("/transactions/suggest-category", response_model=SuggestionResponse)
async def suggest_transaction_category(
    payload: SuggestionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    category_suggester: ChatCompletionSuggester = Depends(get_suggester),
) -> SuggestionResponse:
    get_owner_id(x_user_id)
    try:
        suggestion = await request_suggestion(
            payload.description, payload.amount, category_suggester
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SuggestionUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail="Category suggestion unavailable. Choose a category manually.",
        ) from exc
    return SuggestionResponse(
        category=suggestion.category,
        explanation=suggestion.explanation,
    )


@app.get("/reports/summary", response_model=SummaryResponse)
def budget_summary(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> SummaryResponse:
    owner_id = get_owner_id(x_user_id)
    try:
        if month:
            start_date, end_date = parse_month_value(month)
        windowed = filter_window(
            load_transactions(repository, owner_id), start_date, end_date
        )
        configuration = ConfigurationService(repository).get_active(owner_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    result = aggregate_transactions(windowed)
    alerts = evaluate_thresholds(result, configuration)
    if dispatch_alerts(alerts, alert_sink):
        logger.debug("Raised %d budget alerts for %s", len(alerts), owner_id)

    aggregate = to_aggregate_response(result)
    return SummaryResponse(
        **aggregate.model_dump(),
        start_date=start_date,
        end_date=end_date,
        transaction_count=len(windowed),
        configuration=ConfigurationPayload(**configuration.as_dict()),
        alerts=[to_alert_response(alert) for alert in alerts],
    )


@app.get("/reports/monthly", response_model=list[MonthlyReportEntry])
def monthly_report(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> list[MonthlyReportEntry]:
    owner_id = get_owner_id(x_user_id)
    rows = load_transactions(repository, owner_id)
    summaries = aggregate_by_month(rows)
    return [
        MonthlyReportEntry(
            month=flow.month,
            income=flow.income,
            expense=flow.expense,
            summary=to_aggregate_response(summaries[flow.month]),
        )
        for flow in monthly_cash_flow(rows)
    ]


@app.get("/reports/category-breakdown", response_model=list[CategoryTotalResponse])
def category_breakdown(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> list[CategoryTotalResponse]:
    owner_id = get_owner_id(x_user_id)
    try:
        windowed = filter_window(
            load_transactions(repository, owner_id), start_date, end_date
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        CategoryTotalResponse(category=entry.category, total=entry.total)
        for entry in expense_category_totals(windowed)
    ]


@app.get("/users/me/budget-configuration", response_model=ConfigurationResponse)
def get_budget_configuration(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> ConfigurationResponse:
    owner_id = get_owner_id(x_user_id)
    try:
        stored = repository.get_configuration(owner_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    active = stored if stored is not None else DEFAULT_CONFIGURATION
    return ConfigurationResponse(**active.as_dict(), is_default=stored is None)


@app.put("/users/me/budget-configuration", response_model=ConfigurationResponse)
def update_budget_configuration(
    payload: ConfigurationPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    repository: TransactionStore = Depends(get_store),
) -> ConfigurationResponse:
    owner_id = get_owner_id(x_user_id)
    candidate = Configuration(
        needs_percentage=payload.needs_percentage,
        wants_percentage=payload.wants_percentage,
        savings_percentage=payload.savings_percentage,
    )
    try:
        saved = ConfigurationService(repository).replace(owner_id, candidate)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ConfigurationResponse(**saved.as_dict(), is_default=False)
