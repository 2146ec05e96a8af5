"""Spreadsheet ingestion for weekly meal options and employee selections."""
import calendar
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from db import Store
from errors import DuplicatePeriod, DuplicateUpload, ValidationError
from models import DAYS, ImportedMeal, MealOption, MealSelection, UploadHistory, User, as_utc, utcnow
from spreadsheets import cell, read_rows
from validators import (
    calculate_file_hash,
    extract_name_from_email,
    is_valid_date,
    parse_month_year_from_filename,
    parse_period_from_filename,
    periods_overlap,
    reverse_name_order,
)

logger = logging.getLogger(__name__)

MEAL_OPTIONS = "meal_options"
MEAL_SELECTIONS = "meal_selections"
CATEGORY_KEYWORDS = ("Meniu", "Special", "Salat", "Extra")
OPTIONS_SHEET = "Sheet1"


@dataclass
class ImportResult:
    imported: int = 0
    failed: int = 0
    period: str | None = None
    week_start_date: str | None = None
    details: list[str] = field(default_factory=list)


def next_occurrence(day: int, today: date) -> date:
    """First date with day-of-month ``day`` that is on or after ``today``.

    Months that do not have that day are skipped.
    """
    if not 1 <= day <= 31:
        raise ValidationError(f"Invalid start day in period: {day}")
    year, month = today.year, today.month
    while True:
        if day <= calendar.monthrange(year, month)[1]:
            candidate = date(year, month, day)
            if candidate >= today:
                return candidate
        month += 1
        if month > 12:
            month = 1
            year += 1


def derive_week_start(filename: str, period: str | None, fallback: str | None, today: date) -> str:
    """Work out which week an upload belongs to.

    With a period in the filename the start day comes from it and the month
    and year from the filename when present, otherwise the next occurrence of
    that day. Without a period, ``fallback`` (a form field) or today is used.
    This is a guess by design; historical uploads may land in the wrong month.
    """
    if not period:
        if fallback:
            if not is_valid_date(fallback):
                raise ValidationError("Invalid date format. Use YYYY-MM-DD")
            return fallback
        return today.isoformat()

    start_day = int(period.split("-")[0])
    month_year = parse_month_year_from_filename(filename, today)
    if month_year is None:
        return next_occurrence(start_day, today).isoformat()

    month, year = month_year
    try:
        return date(year, month, start_day).isoformat()
    except ValueError as e:
        raise ValidationError(f"Could not derive a week start date from filename {filename}") from e


def parse_meal_options(rows: list[list[str]]) -> dict[str, dict[str, list[str]]]:
    """Group option rows under their category headers.

    Column 0 is a label column, columns 1..5 are Monday..Friday. A header row
    has five identical non-empty day cells containing a category keyword.
    Identical rows without a keyword are ignored, as are rows before the first
    header. Known fragility: a content row whose five days happen to match and
    contain a keyword is taken for a header.
    """
    categories: dict[str, dict[str, list[str]]] = {}
    current = None

    for index, row in enumerate(rows):
        day_cells = [cell(row, col) for col in range(1, 6)]
        if index == 0 or not day_cells[0]:
            continue

        if len(set(day_cells)) == 1:
            name = day_cells[0]
            if any(keyword in name for keyword in CATEGORY_KEYWORDS):
                current = name
                categories[current] = {day: [] for day in DAYS}
        elif current:
            for day, value in zip(DAYS, day_cells):
                if value:
                    categories[current][day].append(value)

    return categories


class NameMatcher:
    """Resolve spreadsheet names against a fixed snapshot of users."""

    def __init__(self, users: list[User]):
        self.users = list(users)

    def match(self, employee_name: str) -> User | None:
        target = employee_name.strip().lower()

        for user in self.users:
            if user.employee_name and user.employee_name.lower() == target:
                return user

        for user in self.users:
            derived = extract_name_from_email(user.email)
            if derived and derived.lower() == target:
                return user

        # Spreadsheets are often ordered "Last First"
        reversed_name = (reverse_name_order(employee_name.strip()) or "").lower()
        for user in self.users:
            candidates = (user.employee_name, extract_name_from_email(user.email))
            if any(c and c.lower() == reversed_name for c in candidates):
                return user

        return None


class SpreadsheetImporter:
    def __init__(self, store: Store, today: Callable[[], date] = date.today):
        self.store = store
        self.session = store.session
        self.today = today

    # ----- duplicate detection -----

    def check_upload_exists(self, file_hash: str) -> UploadHistory | None:
        return self.session.exec(select(UploadHistory).where(UploadHistory.file_hash == file_hash)).first()

    def check_period_exists(self, period: str | None, upload_type: str) -> UploadHistory | None:
        if not period:
            return None
        uploads = self.session.exec(
            select(UploadHistory)
            .where(UploadHistory.upload_type == upload_type)
            .where(UploadHistory.period.is_not(None))
            .order_by(UploadHistory.upload_date.desc())
        ).all()
        for upload in uploads:
            if periods_overlap(upload.period, period):
                return upload
        return None

    def ensure_not_duplicate(self, file_hash: str, period: str | None, upload_type: str):
        existing = self.check_upload_exists(file_hash)
        if existing:
            logger.warning(f"Duplicate upload rejected; same content as {existing.filename}")
            raise DuplicateUpload("This file has already been uploaded", _upload_details(existing))

        existing = self.check_period_exists(period, upload_type)
        if existing:
            logger.warning(f"Upload for period {period} rejected; overlaps {existing.filename} ({existing.period})")
            raise DuplicatePeriod(
                f"{upload_type.replace('_', ' ').capitalize()} for period {period} have already been uploaded",
                _upload_details(existing),
            )

    def save_upload_history(self, filename, file_hash, upload_type, period, week_start_date, row_count):
        self.session.add(
            UploadHistory(
                filename=filename,
                file_hash=file_hash,
                upload_type=upload_type,
                period=period,
                week_start_date=week_start_date,
                row_count=row_count,
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.warning(f"Upload history for {filename} already recorded")

    # ----- meal options -----

    def import_meal_options(self, filename: str, data: bytes, fallback_week: str | None = None) -> dict:
        period = parse_period_from_filename(filename)
        logger.info(f"Meal options upload: {filename} (period: {period or 'N/A'})")

        file_hash = calculate_file_hash(data)
        self.ensure_not_duplicate(file_hash, period, MEAL_OPTIONS)

        rows = read_rows(data, sheet_name=OPTIONS_SHEET)
        if len(rows) <= 1:
            raise ValidationError("Excel file is empty or has no data")

        week_start_date = derive_week_start(filename, period, fallback_week, self.today())
        logger.info(f"Calculated week_start_date: {week_start_date}")

        categories = parse_meal_options(rows)
        if not categories:
            raise ValidationError("No valid meal options found in Excel file")

        self.session.execute(delete(MealOption).where(MealOption.week_start_date == week_start_date))
        for category, items in categories.items():
            self.session.add(
                MealOption(
                    week_start_date=week_start_date,
                    period=period or "",
                    source_file=filename,
                    category=category,
                    **{day: "\n".join(items[day]) for day in DAYS},
                )
            )
        self.session.commit()
        self.save_upload_history(filename, file_hash, MEAL_OPTIONS, period, week_start_date, len(categories))

        logger.info(f"Saved {len(categories)} meal option categories for {week_start_date}")
        return {"categories": len(categories), "week_start_date": week_start_date, "period": period}

    # ----- meal selections -----

    def import_meal_selections(self, filename: str, data: bytes, fallback_week: str | None = None) -> ImportResult:
        """Best-effort bulk load; every row stands on its own."""
        period = parse_period_from_filename(filename)
        logger.info(f"Meal selections import: {filename} (period: {period or 'N/A'})")

        file_hash = calculate_file_hash(data)
        self.ensure_not_duplicate(file_hash, period, MEAL_SELECTIONS)

        rows = read_rows(data)
        if len(rows) <= 1:
            raise ValidationError("Excel file is empty or has no data")

        week_start_date = derive_week_start(filename, period, fallback_week, self.today())
        logger.info(f"Calculated week_start_date: {week_start_date}")

        matcher = NameMatcher(self.session.exec(select(User).where(User.is_admin == False)).all())  # noqa: E712
        result = ImportResult(period=period, week_start_date=week_start_date)

        for row in rows[1:]:
            employee_name = cell(row, 0)
            if not employee_name:
                continue
            days = {day: cell(row, col) for day, col in zip(DAYS, range(2, 7))}
            try:
                with self.session.begin_nested():
                    user = matcher.match(employee_name)
                    if user is not None:
                        self._upsert_selection(user.id, week_start_date, days)
                    else:
                        self._create_placeholder(employee_name)
                        self._upsert_imported(employee_name, cell(row, 1), week_start_date, period, filename, days)
                result.imported += 1
            except (SQLAlchemyError, ValueError) as e:
                result.failed += 1
                result.details.append(f"{employee_name}: Error while saving - {e}")
                logger.warning(f"Import row for {employee_name} failed: {e}")

        if result.imported == 0 and result.failed:
            self.session.rollback()
            raise ValidationError("No rows could be imported", {"failed": result.failed, "details": result.details})

        self.session.commit()
        self.save_upload_history(filename, file_hash, MEAL_SELECTIONS, period, week_start_date, result.imported)
        logger.info(f"Import complete: {result.imported} imported, {result.failed} failed")
        return result

    def _upsert_selection(self, user_id: int, week_start_date: str, days: dict[str, str]):
        selection = self.session.exec(
            select(MealSelection)
            .where(MealSelection.user_id == user_id)
            .where(MealSelection.week_start_date == week_start_date)
        ).first()
        if selection is None:
            selection = MealSelection(user_id=user_id, week_start_date=week_start_date)
        for day, value in days.items():
            setattr(selection, day, value)
        selection.updated_at = utcnow()
        self.session.add(selection)
        self.session.flush()

    def _create_placeholder(self, employee_name: str) -> User | None:
        """Inactive account holding the name until someone registers with it."""
        existing = self.session.exec(
            select(User).where(func.lower(User.employee_name) == employee_name.strip().lower())
        ).first()
        if existing is not None:
            return None
        user = User(email=None, password_hash=None, is_admin=False, employee_name=employee_name.strip(), is_active=False)
        self.session.add(user)
        self.session.flush()
        return user

    def _upsert_imported(self, employee_name, division, week_start_date, period, filename, days):
        meal = self.session.exec(
            select(ImportedMeal)
            .where(ImportedMeal.employee_name == employee_name)
            .where(ImportedMeal.week_start_date == week_start_date)
        ).first()
        if meal is None:
            meal = ImportedMeal(employee_name=employee_name, week_start_date=week_start_date)
        meal.division = division
        meal.period = period or ""
        meal.source_file = filename
        for day, value in days.items():
            setattr(meal, day, value)
        self.session.add(meal)
        self.session.flush()


def _upload_details(upload: UploadHistory) -> dict:
    uploaded = as_utc(upload.upload_date)
    return {
        "details": {
            "filename": upload.filename,
            "upload_date": uploaded.isoformat() if isinstance(uploaded, datetime) else uploaded,
            "period": upload.period,
        }
    }
