import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import reports
from auth import (
    SESSION_COOKIE,
    generate_session_token,
    read_session_token,
    session_max_age_seconds,
)
from config import get_settings
from database import SessionLocal, session_scope
from models import ExpenseCategory, User, category_color
from periods import resolve_list_period
from schemas import (
    AddFundsIn,
    CategoryOut,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdate,
    GoalIn,
    GoalOut,
    GoalUpdate,
    LoginIn,
    PasswordChangeIn,
    ProfileIn,
    RegisterIn,
    UserOut,
)
from services import (
    DuplicateUsername,
    ExpenseFilters,
    ExpenseService,
    GoalService,
    InvalidCredentials,
    RecordForbidden,
    RecordNotFound,
    UserService,
    local_today,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    import tomllib

    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()

app = FastAPI(title="Personal Finance Tracker", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_today() -> date:
    return local_today()


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    user_id = read_session_token(request.cookies.get(SESSION_COOKIE))
    user = db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


@contextmanager
def record_errors() -> Iterator[None]:
    try:
        yield
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordForbidden as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def start_session(response: Response, user: User) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        generate_session_token(user.id),
        max_age=session_max_age_seconds(),
        httponly=True,
        samesite="lax",
    )


def parse_query_date(value: Optional[str], name: str) -> date:
    if not value:
        raise HTTPException(
            status_code=400, detail="Start date and end date are required"
        )
    try:
        return datetime.fromisoformat(value).date()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(
        f"validation_failed: path={request.url.path} errors={len(exc.errors())}"
    )
    return JSONResponse(
        status_code=400, content={"detail": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        f"request_failed: method={request.method} path={request.url.path}"
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    if settings.seed_demo_user:
        with session_scope() as session:
            UserService(session).ensure_demo_user()


# Session and profile


@app.post("/api/register", response_model=UserOut, status_code=201)
def register(data: RegisterIn, response: Response, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except DuplicateUsername as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    start_session(response, user)
    return user


@app.post("/api/login", response_model=UserOut)
def login(data: LoginIn, response: Response, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data.username, data.password)
    except InvalidCredentials as exc:
        logger.info("login_failed")
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    start_session(response, user)
    logger.info(f"login: user_id={user.id}")
    return user


@app.post("/api/logout", status_code=204)
def logout():
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.get("/api/user", response_model=UserOut)
def get_user(user: User = Depends(current_user)):
    return user


@app.put("/api/user/profile", response_model=UserOut)
def update_profile(
    data: ProfileIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return UserService(db).update_profile(user.id, data)
    except DuplicateUsername as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/user/password", status_code=204)
def change_password(
    data: PasswordChangeIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        UserService(db).change_password(user.id, data)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


# Expenses


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(user: User = Depends(current_user)):
    return [CategoryOut(name=c, color=category_color(c)) for c in ExpenseCategory]


@app.get("/api/expenses", response_model=list[ExpenseOut])
def list_expenses(
    category: Optional[ExpenseCategory] = None,
    period: Optional[str] = None,
    q: Optional[str] = None,
    sort: Literal["newest", "oldest", "amount_high", "amount_low"] = "newest",
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    try:
        resolved = resolve_list_period(period, today=today)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    filters = ExpenseFilters(category=category, period=resolved, query=q, sort=sort)
    return ExpenseService(db, user.id).list(filters)


@app.post("/api/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    data: ExpenseIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, user.id).create(data)


@app.get("/api/expenses/category/{category}", response_model=list[ExpenseOut])
def expenses_by_category(
    category: ExpenseCategory,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, user.id).by_category(category)


@app.get("/api/expenses/dateRange", response_model=list[ExpenseOut])
def expenses_by_date_range(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    start = parse_query_date(start_date, "start date")
    end = parse_query_date(end_date, "end date")
    try:
        return ExpenseService(db, user.id).by_date_range(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense(
    expense_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    with record_errors():
        return ExpenseService(db, user.id).get(expense_id)


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    with record_errors():
        return ExpenseService(db, user.id).update(expense_id, data)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(
    expense_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    with record_errors():
        ExpenseService(db, user.id).delete(expense_id)
    return Response(status_code=204)


# Goals


@app.get("/api/goals", response_model=list[GoalOut])
def list_goals(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return GoalService(db, user.id).list()


@app.post("/api/goals", response_model=GoalOut, status_code=201)
def create_goal(
    data: GoalIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return GoalService(db, user.id).create(data)


@app.put("/api/goals/{goal_id}", response_model=GoalOut)
def update_goal(
    goal_id: int,
    data: GoalUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    with record_errors():
        return GoalService(db, user.id).update(goal_id, data)


@app.post("/api/goals/{goal_id}/funds", response_model=GoalOut)
def add_goal_funds(
    goal_id: int,
    data: AddFundsIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    with record_errors():
        return GoalService(db, user.id).add_funds(goal_id, data)


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    with record_errors():
        GoalService(db, user.id).delete(goal_id)
    return Response(status_code=204)


# Reports


@app.get("/api/summary", response_model=reports.DashboardSummary)
def dashboard_summary(
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    expense_service = ExpenseService(db, user.id)
    goals = GoalService(db, user.id).list()
    return reports.dashboard_summary(
        expense_service.list(), goals, today, recent=expense_service.recent()
    )


@app.get("/api/insights", response_model=reports.Insights)
def insights(
    range_slug: Optional[str] = Query(None, alias="range"),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    expenses = ExpenseService(db, user.id).list()
    try:
        return reports.insights(expenses, today, range_slug)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/goals/progress", response_model=reports.GoalsSummary)
def goals_progress(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return reports.goals_progress(GoalService(db, user.id).list())
