import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Sequence, Union

from money import parse_amount, to_cents
from schemas import CSVRow

REQUIRED_COLUMNS = ("date", "amount", "description", "category")
DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


class CSVHeaderError(ValueError):
    pass


class SkipReason(str, Enum):
    blank = "blank"
    column_mismatch = "column_mismatch"
    blank_description = "blank_description"
    unknown_category = "unknown_category"
    invalid_date = "invalid_date"
    invalid_amount = "invalid_amount"
    non_positive_amount = "non_positive_amount"


@contextmanager
def stage_upload(upload: BinaryIO) -> Iterator[Path]:
    """Copy an uploaded stream to a temporary file, removed on exit."""
    fd, name = tempfile.mkstemp(prefix="expense_import_", suffix=".csv")
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as out:
            shutil.copyfileobj(upload, out)
        yield path
    finally:
        path.unlink(missing_ok=True)


def normalize_header(header: Sequence[str]) -> list[str]:
    names = [name.strip() for name in header]
    missing = [name for name in REQUIRED_COLUMNS if name not in names]
    if missing:
        raise CSVHeaderError("Invalid CSV header format")
    return names


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def is_blank_row(row: Iterable[str]) -> bool:
    return all(not (value or "").strip() for value in row)


def classify_row(
    header: Sequence[str], row: Sequence[str], categories: Iterable[str]
) -> Union[CSVRow, SkipReason]:
    if is_blank_row(row):
        return SkipReason.blank
    if len(row) != len(header):
        return SkipReason.column_mismatch
    record = dict(zip(header, row))

    description = record["description"].strip()
    if not description:
        return SkipReason.blank_description

    category = record["category"].strip()
    if category not in categories:
        return SkipReason.unknown_category

    try:
        expense_date = parse_date(record["date"])
    except ValueError:
        return SkipReason.invalid_date

    try:
        amount_cents = to_cents(parse_amount(record["amount"]))
    except ValueError:
        return SkipReason.invalid_amount
    if amount_cents <= 0:
        return SkipReason.non_positive_amount

    return CSVRow(
        date=expense_date,
        amount_cents=amount_cents,
        description=description,
        category=category,
    )

