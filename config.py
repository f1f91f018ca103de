import os
from functools import lru_cache
from pathlib import Path


DEFAULT_CATEGORY_BUDGETS_JSON = (
    '{"Groceries": 300, "Transport": 100, "Entertainment": 150, "Utilities": 200}'
)


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        csrf_secret: str,
        category_budgets_json: str,
        page_size: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.csrf_secret = csrf_secret
        self.category_budgets_json = category_budgets_json
        self.page_size = page_size
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    session_secret = os.getenv(
        "EXPENSES_SESSION_SECRET",
        "5d0c1f0e8f5b4f7c9a7f2c3d6e1b8a90c4d2e7f6a1b3c5d7e9f0a2b4c6d8e0f1",
    )
    csrf_secret = os.getenv(
        "EXPENSES_CSRF_SECRET",
        "ebf511a733bdc213d6ccc715d338ad1c05bef4ad0ab32bb7eb60bb90f382380a",
    )
    category_budgets_json = os.getenv(
        "EXPENSES_CATEGORY_BUDGETS_JSON", DEFAULT_CATEGORY_BUDGETS_JSON
    )
    page_size = int(os.getenv("EXPENSES_PAGE_SIZE", "20"))
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        csrf_secret=csrf_secret,
        category_budgets_json=category_budgets_json,
        page_size=page_size,
        log_level=log_level,
    )
