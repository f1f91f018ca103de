import csv
import logging
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from config import get_settings
from csrf import ANONYMOUS_USER_ID, generate_csrf_token, validate_csrf_token
from database import get_db
from models import Expense
from money import format_money, parse_amount, to_cents
from periods import resolve_month
from services import (
    AlertGenerator,
    AuthService,
    CategoryBudgetConfig,
    ExpenseForbidden,
    ExpenseNotFound,
    ExpenseService,
    ExpenseValidationError,
    MonthlySummaryService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker")
app.add_middleware(
    SessionMiddleware, secret_key=settings.session_secret, same_site="lax"
)
BASE_DIR = Path(__file__).resolve().parent

app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

templates.env.filters["currency"] = format_money
templates.env.globals["MONTH_NAMES"] = MONTH_NAMES


class LoginRequired(Exception):
    pass


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return RedirectResponse(url="/login", status_code=303)


@lru_cache(maxsize=1)
def get_budgets() -> CategoryBudgetConfig:
    return CategoryBudgetConfig(settings.category_budgets_json)


def current_user_id(request: Request) -> int:
    user_id = request.session.get("user_id")
    if not user_id:
        raise LoginRequired()
    return int(user_id)


def local_today() -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


def render(
    request: Request,
    template: str,
    context: dict[str, object],
    status_code: int = 200,
) -> HTMLResponse:
    user_id = request.session.get("user_id") or ANONYMOUS_USER_ID
    ctx: dict[str, object] = {
        "current_user_id": request.session.get("user_id"),
        "current_user_name": request.session.get("username"),
        "csrf_token": generate_csrf_token(int(user_id)),
    }
    ctx.update(context)
    return templates.TemplateResponse(
        request, template, ctx, status_code=status_code
    )


def month_from_request(request: Request) -> tuple[int, int]:
    try:
        return resolve_month(
            request.query_params.get("year"),
            request.query_params.get("month"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def expense_payload_from_form(form) -> dict[str, object]:
    try:
        amount = parse_amount(str(form.get("amount") or ""))
    except ValueError as exc:
        raise ExpenseValidationError("Amount must be a number.") from exc
    try:
        amount_cents = to_cents(amount)
    except ValueError as exc:
        raise ExpenseValidationError("Amount is too large.") from exc
    raw_date = str(form.get("date") or "").strip()
    try:
        expense_date = date.fromisoformat(raw_date) if raw_date else local_today()
    except ValueError as exc:
        raise ExpenseValidationError("Invalid date.") from exc
    return {
        "date": expense_date,
        "amount_cents": amount_cents,
        "description": str(form.get("description") or ""),
        "category": str(form.get("category") or ""),
    }


def owned_expense_or_error(service: ExpenseService, user_id: int, expense_id: int):
    try:
        return service.get_owned(user_id, expense_id)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ExpenseForbidden as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def _require_csrf(form, user_id: int) -> None:
    if not validate_csrf_token(str(form.get("csrf_token") or ""), user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


@app.get("/register", response_class=HTMLResponse)
def register_page(request: Request):
    return render(request, "auth/register.html", {"old": {}})


@app.post("/register")
async def register(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    _require_csrf(form, ANONYMOUS_USER_ID)
    username = str(form.get("username") or "")
    password = str(form.get("password") or "")
    try:
        AuthService(db).register(username, password)
    except ValueError as exc:
        logger.info(f"register_failed: {exc}")
        return render(
            request,
            "auth/register.html",
            {"error": str(exc), "old": {"username": username}},
            status_code=400,
        )
    return RedirectResponse(url="/login", status_code=303)


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    return render(request, "auth/login.html", {"old": {}})


@app.post("/login")
async def login(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    _require_csrf(form, ANONYMOUS_USER_ID)
    username = str(form.get("username") or "").strip()
    password = str(form.get("password") or "")
    if not username or not password.strip():
        return render(
            request,
            "auth/login.html",
            {"error": "Username and password are required", "old": {}},
            status_code=400,
        )
    user = AuthService(db).attempt(username, password)
    if user is None:
        return render(
            request,
            "auth/login.html",
            {"error": "Invalid username or password", "old": {"username": username}},
            status_code=400,
        )
    request.session.clear()
    request.session["user_id"] = user.id
    request.session["username"] = user.username
    return RedirectResponse(url="/", status_code=303)


@app.get("/logout")
def logout(request: Request):
    logger.info(f"logout: user_id={request.session.get('user_id')}")
    request.session.clear()
    return RedirectResponse(url="/login", status_code=303)


@app.get("/", response_class=HTMLResponse)
def dashboard(request: Request, db: Session = Depends(get_db)):
    user_id = current_user_id(request)
    year, month = month_from_request(request)
    summary = MonthlySummaryService(db).summarize(user_id, year, month)
    alerts = AlertGenerator(get_budgets(), db).generate(user_id, year, month)

    current_year = local_today().year
    years = set(range(current_year - 5, current_year + 1))
    years.update(ExpenseService(db, get_budgets()).list_years(user_id))
    years.add(year)
    return render(
        request,
        "dashboard.html",
        {
            "summary": summary,
            "alerts": alerts,
            "years": sorted(years, reverse=True),
            "selected_year": year,
            "selected_month": month,
        },
    )


def _expenses_context(
    request: Request, db: Session, user_id: int
) -> dict[str, object]:
    year, month = month_from_request(request)
    try:
        page = int(request.query_params.get("page", "1"))
        page_size = int(request.query_params.get("page_size", settings.page_size))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid page") from exc
    listing = ExpenseService(db, get_budgets()).list(
        user_id, year, month, page, page_size
    )
    return {
        "listing": listing,
        "year": year,
        "month": month,
        "imported": request.query_params.get("imported"),
    }


@app.get("/expenses", response_class=HTMLResponse)
def expenses_page(request: Request, db: Session = Depends(get_db)):
    user_id = current_user_id(request)
    context = _expenses_context(request, db, user_id)
    return render(request, "expenses/index.html", context)


@app.get("/expenses/create", response_class=HTMLResponse)
def create_expense_page(request: Request):
    current_user_id(request)
    return render(
        request,
        "expenses/create.html",
        {"categories": get_budgets().categories(), "old": {}, "error": None},
    )


@app.post("/expenses")
async def create_expense(request: Request, db: Session = Depends(get_db)):
    user_id = current_user_id(request)
    form = await request.form()
    _require_csrf(form, user_id)
    try:
        ExpenseService(db, get_budgets()).create(
            user_id, expense_payload_from_form(form)
        )
    except ExpenseValidationError as exc:
        return render(
            request,
            "expenses/create.html",
            {
                "categories": get_budgets().categories(),
                "old": dict(form),
                "error": str(exc),
            },
            status_code=400,
        )
    return RedirectResponse(url="/expenses", status_code=303)


@app.get("/expenses/{expense_id}/edit", response_class=HTMLResponse)
def edit_expense_page(
    expense_id: int, request: Request, db: Session = Depends(get_db)
):
    user_id = current_user_id(request)
    expense = owned_expense_or_error(
        ExpenseService(db, get_budgets()), user_id, expense_id
    )
    return render(
        request,
        "expenses/edit.html",
        {
            "expense": expense,
            "categories": get_budgets().categories(),
            "old": _form_values(expense),
            "error": None,
        },
    )


def _form_values(expense: Expense) -> dict[str, str]:
    return {
        "date": expense.date.isoformat(),
        "amount": f"{expense.amount_cents / 100:.2f}",
        "description": expense.description,
        "category": expense.category,
    }


@app.post("/expenses/{expense_id}/edit")
async def edit_expense_submit(
    expense_id: int, request: Request, db: Session = Depends(get_db)
):
    user_id = current_user_id(request)
    form = await request.form()
    _require_csrf(form, user_id)
    service = ExpenseService(db, get_budgets())
    expense = owned_expense_or_error(service, user_id, expense_id)
    try:
        service.update(user_id, expense_id, expense_payload_from_form(form))
    except ExpenseValidationError as exc:
        return render(
            request,
            "expenses/edit.html",
            {
                "expense": expense,
                "categories": get_budgets().categories(),
                "old": dict(form),
                "error": str(exc),
            },
            status_code=400,
        )
    return RedirectResponse(url="/expenses", status_code=303)


@app.post("/expenses/{expense_id}/delete")
async def delete_expense(
    expense_id: int, request: Request, db: Session = Depends(get_db)
):
    user_id = current_user_id(request)
    form = await request.form()
    _require_csrf(form, user_id)
    service = ExpenseService(db, get_budgets())
    owned_expense_or_error(service, user_id, expense_id)
    service.delete(user_id, expense_id)
    return RedirectResponse(url="/expenses", status_code=303)


@app.post("/expenses/import")
async def import_expenses(
    request: Request,
    csv_file: Optional[UploadFile] = File(None, alias="csv"),
    db: Session = Depends(get_db),
):
    user_id = current_user_id(request)
    form = await request.form()
    _require_csrf(form, user_id)

    error: Optional[str] = None
    if csv_file is None or not csv_file.filename:
        error = "No file uploaded."
    else:
        try:
            count = ExpenseService(db, get_budgets()).import_from_csv(
                user_id, csv_file.file
            )
        except (ValueError, csv.Error) as exc:
            error = f"Failed to import CSV: {exc}"
        except SQLAlchemyError as exc:
            raise HTTPException(
                status_code=500, detail="Failed to import CSV"
            ) from exc
        finally:
            await csv_file.close()

    if error:
        context = _expenses_context(request, db, user_id)
        context["error"] = error
        return render(request, "expenses/index.html", context, status_code=400)
    return RedirectResponse(url=f"/expenses?imported={count}", status_code=303)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
