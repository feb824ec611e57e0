import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import InvalidToken, bearer_token, generate_access_token, read_access_token
from config import get_settings
from database import get_db, init_db
from filtering import SortOrder
from models import ExpenseCategory, User
from periods import DateRangePreset
from schemas import (
    AuthOut,
    ExpenseIn,
    ExpenseListOut,
    ExpenseRecord,
    ExpenseUpdate,
    LoginIn,
    MessageOut,
    PaginationOut,
    StatisticsOut,
    TokenStatusOut,
    UserIn,
    UserOut,
)
from services import (
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    EmailAlreadyRegistered,
    ExpenseNotFound,
    ExpenseQuery,
    ExpenseService,
    InvalidCredentials,
    UserNotFound,
    UserService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    logger.info(f"startup: version={APP_VERSION} env={get_settings().environment}")
    yield


app = FastAPI(title="Expense Tracker API", version=APP_VERSION, lifespan=lifespan)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"}
    )


def _error_field(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "request"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _error_field(tuple(err.get("loc", ()))), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"message": "Validation failed", "errors": errors}
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"database_error: path={request.url.path}")
    content: dict[str, object] = {"message": "Internal server error"}
    if not get_settings().is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def get_current_user(
    authorization: Optional[str] = Header(None), db: Session = Depends(get_db)
) -> User:
    try:
        user_id = read_access_token(bearer_token(authorization))
        return UserService(db).get(user_id)
    except (InvalidToken, UserNotFound) as exc:
        raise _unauthorized(str(exc)) from exc


def get_expense_service(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> ExpenseService:
    return ExpenseService(db, user.id)


@app.get("/health")
def health():
    return {
        "status": "OK",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/categories")
def list_categories() -> list[str]:
    return [category.value for category in ExpenseCategory]


@app.post("/api/auth/register", response_model=AuthOut, status_code=201)
def register(data: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except EmailAlreadyRegistered as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AuthOut(token=generate_access_token(user.id), user=UserOut.from_user(user))


@app.post("/api/auth/login", response_model=AuthOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data.email, data.password)
    except InvalidCredentials as exc:
        raise _unauthorized(str(exc)) from exc
    return AuthOut(token=generate_access_token(user.id), user=UserOut.from_user(user))


@app.post("/api/auth/verify", response_model=TokenStatusOut)
def verify_token(user: User = Depends(get_current_user)):
    return TokenStatusOut(valid=True, user=UserOut.from_user(user))


@app.get("/api/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return UserOut.from_user(user)


def expense_query(
    category: Optional[ExpenseCategory] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    date_range: Optional[DateRangePreset] = Query(None, alias="dateRange"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    sort_by: Literal["date", "amount", "title", "name", "createdAt"] = Query(
        "date", alias="sortBy"
    ),
    sort_order: SortOrder = Query(SortOrder.desc, alias="sortOrder"),
) -> ExpenseQuery:
    return ExpenseQuery(
        category=category,
        search=search,
        date_range=date_range,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.post("/api/expenses", response_model=ExpenseRecord, status_code=201)
def create_expense(
    data: ExpenseIn, service: ExpenseService = Depends(get_expense_service)
):
    return ExpenseRecord.from_expense(service.create(data))


@app.get("/api/expenses", response_model=ExpenseListOut)
def list_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    query: ExpenseQuery = Depends(expense_query),
    service: ExpenseService = Depends(get_expense_service),
):
    try:
        result = service.list(query, page=page, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseListOut(
        expenses=[ExpenseRecord.from_expense(item) for item in result.items],
        pagination=PaginationOut(**asdict(result.pagination)),
    )


@app.get("/api/expenses/stats/summary", response_model=StatisticsOut)
def expense_statistics(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    service: ExpenseService = Depends(get_expense_service),
):
    snapshot = service.statistics(start_date, end_date)
    return StatisticsOut.from_snapshot(snapshot)


@app.get("/api/expenses/export.csv")
def export_expenses_endpoint(
    query: ExpenseQuery = Depends(expense_query),
    service: ExpenseService = Depends(get_expense_service),
):
    csv_text = service.export_csv(query)
    filename = f"expenses_{date.today().isoformat()}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/expenses/{expense_id}", response_model=ExpenseRecord)
def get_expense(
    expense_id: str, service: ExpenseService = Depends(get_expense_service)
):
    try:
        return ExpenseRecord.from_expense(service.get(expense_id))
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/expenses/{expense_id}", response_model=ExpenseRecord)
def update_expense(
    expense_id: str,
    data: ExpenseUpdate,
    service: ExpenseService = Depends(get_expense_service),
):
    try:
        return ExpenseRecord.from_expense(service.update(expense_id, data))
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/expenses/{expense_id}", response_model=MessageOut)
def delete_expense(
    expense_id: str, service: ExpenseService = Depends(get_expense_service)
):
    try:
        service.delete(expense_id)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MessageOut(message="Expense deleted successfully")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
