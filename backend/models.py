from datetime import UTC, datetime

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel, UniqueConstraint

DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


def utcnow() -> datetime:
    return datetime.now(UTC)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str | None = Field(default=None, unique=True, index=True)  # None for import placeholders
    password_hash: str | None = Field(default=None)
    is_admin: bool = Field(default=False)
    employee_name: str | None = Field(default=None, index=True)
    is_active: bool = Field(default=True)


class MealOption(SQLModel, table=True):
    __tablename__ = "meal_options"
    __table_args__ = (UniqueConstraint("week_start_date", "category", name="uniq_meal_options_week_category"),)

    id: int | None = Field(default=None, primary_key=True)
    week_start_date: str = Field(index=True)  # YYYY-MM-DD
    period: str | None = Field(default=None)
    source_file: str | None = Field(default=None)
    category: str
    monday: str = Field(default="")
    tuesday: str = Field(default="")
    wednesday: str = Field(default="")
    thursday: str = Field(default="")
    friday: str = Field(default="")


class MealSelection(SQLModel, table=True):
    __tablename__ = "meal_selections"
    __table_args__ = (UniqueConstraint("user_id", "week_start_date", name="uniq_meal_selections_user_week"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    week_start_date: str = Field(index=True)
    monday: str = Field(default="")
    tuesday: str = Field(default="")
    wednesday: str = Field(default="")
    thursday: str = Field(default="")
    friday: str = Field(default="")
    is_locked: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ImportedMeal(SQLModel, table=True):
    """Selections imported for names that no account could be matched to."""

    __tablename__ = "imported_meals"
    __table_args__ = (UniqueConstraint("employee_name", "week_start_date", name="uniq_imported_meals_name_week"),)

    id: int | None = Field(default=None, primary_key=True)
    employee_name: str = Field(index=True)
    division: str = Field(default="")
    week_start_date: str = Field(index=True)
    period: str | None = Field(default=None)
    source_file: str | None = Field(default=None)
    monday: str = Field(default="")
    tuesday: str = Field(default="")
    wednesday: str = Field(default="")
    thursday: str = Field(default="")
    friday: str = Field(default="")


class MealReview(SQLModel, table=True):
    __tablename__ = "meal_reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "meal_name", "week_start_date", "day_of_week", name="uniq_meal_reviews_user_meal_day"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    meal_name: str = Field(index=True)
    review_text: str = Field(default="")
    rating: int | None = Field(default=None, ge=1, le=5)
    week_start_date: str
    day_of_week: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WeekSettings(SQLModel, table=True):
    __tablename__ = "week_settings"

    week_start_date: str = Field(primary_key=True)
    is_locked: bool = Field(default=False)
    locked_at: datetime | None = Field(default=None)


class WeekUnlock(SQLModel, table=True):
    """Users exempted from an admin week lock."""

    __tablename__ = "week_unlocks"

    week_start_date: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True)


class UnlockRequest(SQLModel, table=True):
    __tablename__ = "unlock_requests"
    # Only one open request per (user, week); approved/rejected rows are kept as history
    __table_args__ = (
        Index(
            "idx_unique_pending_request",
            "user_id",
            "week_start_date",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    week_start_date: str
    status: str = Field(default="pending")  # pending, approved, rejected
    requested_at: datetime = Field(default_factory=utcnow)
    processed_at: datetime | None = Field(default=None)
    processed_by: int | None = Field(default=None, foreign_key="users.id")


class UploadHistory(SQLModel, table=True):
    __tablename__ = "upload_history"

    id: int | None = Field(default=None, primary_key=True)
    filename: str
    file_hash: str = Field(unique=True)
    upload_type: str = Field(index=True)  # meal_options, meal_selections
    period: str | None = Field(default=None)
    week_start_date: str | None = Field(default=None)
    upload_date: datetime = Field(default_factory=utcnow)
    row_count: int = Field(default=0)


class MealTransfer(SQLModel, table=True):
    __tablename__ = "meal_transfers"
    __table_args__ = (
        UniqueConstraint("from_user_id", "week_start_date", "day_of_week", name="uniq_meal_transfers_user_day"),
    )

    id: int | None = Field(default=None, primary_key=True)
    from_user_id: int = Field(foreign_key="users.id", index=True)
    week_start_date: str = Field(index=True)
    day_of_week: str
    meal_details: str
    status: str = Field(default="available")  # available, claimed
    created_at: datetime = Field(default_factory=utcnow)
    claimed_by_user_id: int | None = Field(default=None, foreign_key="users.id")
    claimed_at: datetime | None = Field(default=None)


class MenuCopy(SQLModel, table=True):
    __tablename__ = "menu_copies"
    __table_args__ = (UniqueConstraint("user_id", "week_start_date", "day_of_week", name="uniq_menu_copies_user_day"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    copied_from_user_id: int = Field(foreign_key="users.id")
    week_start_date: str
    day_of_week: str
    menu_details: str
    created_at: datetime = Field(default_factory=utcnow)


class Invitation(SQLModel, table=True):
    __tablename__ = "user_invitations"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    invitation_token: str = Field(unique=True, index=True)
    is_admin: bool = Field(default=False)
    invited_by: int | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    used_at: datetime | None = Field(default=None)
    status: str = Field(default="pending")  # pending, used, cancelled


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
