"""Domain service: users, weekly options and selections, reviews, transfers,
menu copies, invitations, search and admin week management.

Lock rules live in ``locks.WeekLocks`` and spreadsheet ingestion in
``importer.SpreadsheetImporter``; this module composes them over one session.
"""
import logging
import os
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import delete, func
from sqlmodel import Session, select
from werkzeug.security import check_password_hash, generate_password_hash

import meal_stats
from db import Store
from errors import Conflict, ExternalServiceError, Forbidden, NotFound, Unauthorized, ValidationError
from importer import SpreadsheetImporter
from locks import WeekLocks, parse_week
from models import (
    DAYS,
    ImportedMeal,
    Invitation,
    MealOption,
    MealReview,
    MealSelection,
    MealTransfer,
    MenuCopy,
    UploadHistory,
    User,
    as_utc,
    utcnow,
)
from notifications import EmailNotifier
from validators import (
    allowed_domains,
    count_words,
    extract_name_from_email,
    generate_token,
    is_valid_day,
    normalize_email,
    reverse_name_order,
    validate_email,
    validate_password_strength,
)

logger = logging.getLogger(__name__)

MAX_REVIEW_WORDS = 500
PRIORITIZED_REVIEWS = 5
RECENT_REVIEWS = 3
INVITATION_TTL = timedelta(hours=48)
MIN_ADMIN_PASSWORD_LENGTH = 8

AVAILABLE = "available"
CLAIMED = "claimed"

SELECTION_COLUMNS = (
    "ms.id, ms.user_id, ms.week_start_date, ms.monday, ms.tuesday, ms.wednesday, ms.thursday, ms.friday, ms.is_locked"
)


def public_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "is_admin": bool(user.is_admin),
        "employee_name": user.employee_name,
        "is_active": bool(user.is_active),
    }


def require_day(day: str) -> str:
    if not is_valid_day(day):
        raise ValidationError(f"Invalid day. Use one of: {', '.join(DAYS)}")
    return day.lower()


def domain_error_message() -> str:
    return f"Email must belong to one of: {', '.join(allowed_domains())}"


class MealService:
    def __init__(self, session: Session, notifier: EmailNotifier | None = None, today: Callable[[], date] = date.today):
        self.store = Store(session)
        self.session = session
        self.notifier = notifier or EmailNotifier()
        self.today = today
        self.locks = WeekLocks(self.store, today)
        self.importer = SpreadsheetImporter(self.store, today)

    # ===== users =====

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def get_user_by_email(self, email: str) -> User | None:
        return self.session.exec(select(User).where(User.email == normalize_email(email))).first()

    def _find_placeholder(self, employee_name: str | None) -> User | None:
        """Inactive imported user whose name matches, in either token order."""
        if not employee_name:
            return None
        names = {employee_name.lower(), (reverse_name_order(employee_name) or "").lower()}
        return self.session.exec(
            select(User)
            .where(User.is_active == False)  # noqa: E712
            .where(User.email.is_(None))
            .where(func.lower(User.employee_name).in_(names))
        ).first()

    def register(self, email: str, password: str) -> User:
        if not validate_email(email):
            raise ValidationError(domain_error_message())
        strength = validate_password_strength(password)
        if not strength["is_valid"]:
            raise ValidationError(
                "Password does not meet security requirements", {"details": ". ".join(strength["feedback"])}
            )

        email = normalize_email(email)
        if self.get_user_by_email(email):
            raise Conflict("Email already exists")

        expected_name = extract_name_from_email(email)
        user = self._find_placeholder(expected_name)
        if user is not None:
            # Claim the account created when this person's meals were imported
            logger.info(f"Activating imported user {user.employee_name} with email {email}")
            user.email = email
            user.is_active = True
        else:
            user = User(email=email, employee_name=expected_name)
        user.password_hash = generate_password_hash(password)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"User registered: {email}")
        return user

    def login(self, email: str, password: str) -> User:
        if not validate_email(email):
            raise ValidationError(domain_error_message())
        user = self.get_user_by_email(email)
        if user is None or not user.is_active or not user.password_hash:
            raise Unauthorized("Invalid credentials")
        if not check_password_hash(user.password_hash, password):
            raise Unauthorized("Invalid credentials")

        if not user.employee_name:
            user.employee_name = extract_name_from_email(user.email)
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
            logger.info(f"Auto-set employee name for {user.email}: {user.employee_name}")
        return user

    def create_user(self, email: str, password: str, is_admin: bool = False) -> User:
        if not validate_email(email):
            raise ValidationError(domain_error_message())
        if len(password or "") < 8:
            raise ValidationError("Password must be at least 8 characters long")
        email = normalize_email(email)
        if self.get_user_by_email(email):
            raise Conflict("Email already exists")
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            is_admin=is_admin,
            employee_name=extract_name_from_email(email),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"User created by admin: {email} (admin: {is_admin})")
        return user

    def list_users(self) -> list[User]:
        return list(
            self.session.exec(
                select(User).where(User.is_admin == False).order_by(User.employee_name, User.email)  # noqa: E712
            ).all()
        )

    def get_latest_imported_week(self) -> str | None:
        return self.session.exec(select(func.max(ImportedMeal.week_start_date))).first()

    def get_employee_names(self, week_start_date: str | None = None) -> list[str]:
        """Names from the latest (or given) imported week."""
        week = week_start_date or self.get_latest_imported_week()
        if not week:
            return []
        rows = self.session.exec(
            select(ImportedMeal.employee_name)
            .where(ImportedMeal.week_start_date == week)
            .distinct()
            .order_by(ImportedMeal.employee_name)
        ).all()
        return list(rows)

    def autocomplete_names(self, query: str | None = None) -> list[str]:
        names = sorted(u.employee_name for u in self.list_users() if u.employee_name and u.employee_name.strip())
        if query:
            needle = query.strip().lower()
            names = [n for n in names if needle in n.lower()]
        return names

    def set_employee_name(self, user_id: int, employee_name: str) -> User:
        if not employee_name or not employee_name.strip():
            raise ValidationError("Employee name is required")
        if employee_name not in self.get_employee_names():
            raise ValidationError("Name does not exist in the current menu")
        user = self.get_user(user_id)
        user.employee_name = employee_name
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def ensure_default_admin(self) -> User | None:
        """Create the admin from ADMIN_EMAIL/ADMIN_PASSWORD if it does not exist yet."""
        email = os.getenv("ADMIN_EMAIL")
        password = os.getenv("ADMIN_PASSWORD")
        if not email or not password:
            logger.info("ADMIN_EMAIL/ADMIN_PASSWORD not set - skipping default admin")
            return None
        if len(password) < MIN_ADMIN_PASSWORD_LENGTH:
            logger.warning(f"ADMIN_PASSWORD must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters - skipping default admin")
            return None

        existing = self.get_user_by_email(email)
        if existing:
            return existing
        admin = User(email=normalize_email(email), password_hash=generate_password_hash(password), is_admin=True)
        self.session.add(admin)
        self.session.commit()
        self.session.refresh(admin)
        logger.info(f"Default admin created: {admin.email}")
        return admin

    # ===== meal options =====

    def get_latest_options_week(self) -> str | None:
        return self.session.exec(select(func.max(MealOption.week_start_date))).first()

    def get_meal_options(self, week_start_date: str | None = None) -> dict:
        week = week_start_date or self.get_latest_options_week()
        if not week:
            return {"week_start_date": None, "options": []}
        parse_week(week)
        options = self.session.exec(
            select(MealOption).where(MealOption.week_start_date == week).order_by(MealOption.id)
        ).all()
        return {"week_start_date": week, "options": [o.model_dump() for o in options]}

    def upload_meal_options(self, filename: str, data: bytes, week_start_date: str | None = None) -> dict:
        result = self.importer.import_meal_options(filename, data, week_start_date)

        users = self.session.exec(
            select(User).where(User.is_admin == False).where(User.email.is_not(None))  # noqa: E712
        ).all()
        notification = self.notifier.send_meal_options_notification(result["week_start_date"], users)
        if not notification.get("success"):
            logger.warning(f"Meal options notification not sent: {notification.get('error', notification)}")

        return {
            "success": True,
            "message": f"{result['categories']} meal option categories saved",
            **result,
            "notification": notification,
        }

    def import_meal_selections(self, filename: str, data: bytes, week_start_date: str | None = None) -> dict:
        result = self.importer.import_meal_selections(filename, data, week_start_date)
        return {
            "success": True,
            "message": f"{result.imported} rows imported, {result.failed} failed",
            "imported": result.imported,
            "failed": result.failed,
            "period": result.period,
            "week_start_date": result.week_start_date,
            "details": result.details,
        }

    # ===== meal selections =====

    def save_selection(self, user_id: int, week_start_date: str, selections: dict[str, str]) -> MealSelection:
        parse_week(week_start_date)
        self.locks.ensure_can_edit(user_id, week_start_date)

        selection = self.locks.get_selection(user_id, week_start_date)
        if selection is None:
            selection = MealSelection(user_id=user_id, week_start_date=week_start_date)
        for day in DAYS:
            setattr(selection, day, selections.get(day) or "")
        selection.updated_at = utcnow()
        self.session.add(selection)
        self.session.commit()
        self.session.refresh(selection)
        logger.info(f"Selection saved for user {user_id}, week {week_start_date}")
        return selection

    def get_my_selection(self, user_id: int, week_start_date: str) -> dict:
        parse_week(week_start_date)
        selection = self.locks.get_selection(user_id, week_start_date)
        return {
            "selection": selection.model_dump() if selection else None,
            "is_locked": self.locks.is_week_locked_for_user(week_start_date, user_id),
            "is_user_locked": bool(selection and selection.is_locked),
            "has_pending_unlock_request": self.locks.has_pending_unlock_request(user_id, week_start_date),
        }

    def get_history(self, user_id: int) -> list[dict]:
        """Registered selections first, then imported rows; one entry per week."""
        user = self.get_user(user_id)
        selections = self.store.all(
            f"""
            SELECT {SELECTION_COLUMNS}, MAX(mo.period) AS period
            FROM meal_selections ms
            LEFT JOIN meal_options mo ON ms.week_start_date = mo.week_start_date
            WHERE ms.user_id = :user_id
            GROUP BY {SELECTION_COLUMNS}
            ORDER BY ms.week_start_date DESC
            """,
            {"user_id": user_id},
        )
        imported = []
        if user.employee_name:
            imported = self.session.exec(
                select(ImportedMeal)
                .where(ImportedMeal.employee_name == user.employee_name)
                .order_by(ImportedMeal.week_start_date.desc())
            ).all()

        history, seen = [], set()
        for source, rows in (("selection", selections), ("imported", [m.model_dump() for m in imported])):
            for row in rows:
                if row["week_start_date"] in seen:
                    continue
                seen.add(row["week_start_date"])
                history.append(
                    {
                        "week_start_date": row["week_start_date"],
                        "period": row.get("period"),
                        **{day: row.get(day) or "" for day in DAYS},
                        "source": source,
                    }
                )
        return history

    def get_registered_selections(self, week_start_date: str) -> list[dict]:
        return self.store.all(
            f"""
            SELECT {SELECTION_COLUMNS}, u.email, u.employee_name
            FROM meal_selections ms
            JOIN users u ON ms.user_id = u.id
            WHERE ms.week_start_date = :week
            ORDER BY u.employee_name
            """,
            {"week": week_start_date},
        )

    def get_imported_selections(self, week_start_date: str) -> list[dict]:
        rows = self.session.exec(
            select(ImportedMeal).where(ImportedMeal.week_start_date == week_start_date).order_by(ImportedMeal.employee_name)
        ).all()
        return [{**row.model_dump(), "source": "imported"} for row in rows]

    def get_all_selections(self, week_start_date: str) -> list[dict]:
        parse_week(week_start_date)
        registered = [{**row, "source": "selection"} for row in self.get_registered_selections(week_start_date)]
        return registered + self.get_imported_selections(week_start_date)

    def count_active_employees(self) -> int:
        return self.session.exec(
            select(func.count(User.id)).where(User.is_admin == False).where(User.is_active == True)  # noqa: E712
        ).one()

    def _report_week(self, week_start_date: str | None) -> str:
        week = week_start_date or self.get_latest_options_week()
        if not week:
            raise ValidationError("No meal options available")
        parse_week(week)
        return week

    def get_statistics(self, week_start_date: str | None = None) -> dict:
        week = self._report_week(week_start_date)
        statistics = meal_stats.compute_statistics(
            self.get_registered_selections(week),
            self.get_imported_selections(week),
            self.count_active_employees(),
        )
        return {"statistics": statistics, "week_start_date": week}

    def export_statistics(self, week_start_date: str | None = None) -> tuple[str, list]:
        week = self._report_week(week_start_date)
        rows = self.get_registered_selections(week) + self.get_imported_selections(week)
        return meal_stats.export_filename("Statistics_", week), meal_stats.build_statistics_sheets(rows)

    def export_selections(self, week_start_date: str | None = None) -> tuple[str, list]:
        week = self._report_week(week_start_date)
        rows = self.get_registered_selections(week) + self.get_imported_selections(week)
        options = self.get_meal_options(week)["options"]
        return meal_stats.export_filename("FOOD ", week), meal_stats.build_orders_sheets(rows, options)

    # ===== reviews =====

    def save_review(
        self,
        user_id: int,
        meal_name: str,
        week_start_date: str,
        day_of_week: str,
        review_text: str = "",
        rating: int | None = None,
    ) -> MealReview:
        parse_week(week_start_date)
        day = require_day(day_of_week)
        if not meal_name or not meal_name.strip():
            raise ValidationError("Meal name is required")
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        if count_words(review_text) > MAX_REVIEW_WORDS:
            raise ValidationError(f"A review can contain at most {MAX_REVIEW_WORDS} words")

        review = self.get_my_review(user_id, meal_name, week_start_date, day)
        if review is None:
            review = MealReview(user_id=user_id, meal_name=meal_name, week_start_date=week_start_date, day_of_week=day)
        review.review_text = review_text or ""
        review.rating = rating
        review.updated_at = utcnow()
        self.session.add(review)
        self.session.commit()
        self.session.refresh(review)
        return review

    def get_my_review(self, user_id: int, meal_name: str, week_start_date: str, day_of_week: str) -> MealReview | None:
        return self.session.exec(
            select(MealReview)
            .where(MealReview.user_id == user_id)
            .where(MealReview.meal_name == meal_name)
            .where(MealReview.week_start_date == week_start_date)
            .where(MealReview.day_of_week == day_of_week.lower())
        ).first()

    def _reviews_query(self, where: str, params: dict, limit: int | None = None) -> list[dict]:
        stmt = f"""
            SELECT mr.*, u.email, u.employee_name
            FROM meal_reviews mr
            JOIN users u ON mr.user_id = u.id
            WHERE {where}
            ORDER BY mr.created_at DESC, mr.id DESC
        """
        if limit is not None:
            stmt += " LIMIT :limit"
            params = {**params, "limit": limit}
        return self.store.all(stmt, params)

    def get_reviews_for_meal(self, meal_name: str, week_start_date: str, day_of_week: str) -> list[dict]:
        return self._reviews_query(
            "mr.meal_name = :meal AND mr.week_start_date = :week AND mr.day_of_week = :day",
            {"meal": meal_name, "week": week_start_date, "day": day_of_week.lower()},
        )

    def get_recent_reviews(self, meal_name: str) -> list[dict]:
        return self._reviews_query("mr.meal_name = :meal", {"meal": meal_name}, RECENT_REVIEWS)

    def get_my_reviews(self, user_id: int) -> list[MealReview]:
        return list(
            self.session.exec(
                select(MealReview)
                .where(MealReview.user_id == user_id)
                .order_by(MealReview.created_at.desc(), MealReview.id.desc())
            ).all()
        )

    def get_prioritized_reviews(self, meal_name: str, user_id: int) -> list[dict]:
        """The caller's own reviews first, topped up with others to five."""
        own = self._reviews_query("mr.meal_name = :meal AND mr.user_id = :user_id", {"meal": meal_name, "user_id": user_id})
        remaining = PRIORITIZED_REVIEWS - len(own)
        if remaining <= 0:
            return own[:PRIORITIZED_REVIEWS]
        others = self._reviews_query(
            "mr.meal_name = :meal AND mr.user_id != :user_id", {"meal": meal_name, "user_id": user_id}, remaining
        )
        return own + others

    # ===== meal transfers =====

    def create_transfer(self, user_id: int, week_start_date: str, day_of_week: str, meal_details: str) -> MealTransfer:
        parse_week(week_start_date)
        day = require_day(day_of_week)
        if not meal_details or not meal_details.strip():
            raise ValidationError("Meal details are required")

        transfer = self.get_my_transfer(user_id, week_start_date, day)
        if transfer is None:
            transfer = MealTransfer(
                from_user_id=user_id, week_start_date=week_start_date, day_of_week=day, meal_details=meal_details
            )
        # Re-offering always reopens the transfer
        transfer.meal_details = meal_details
        transfer.status = AVAILABLE
        transfer.created_at = utcnow()
        transfer.claimed_by_user_id = None
        transfer.claimed_at = None
        self.session.add(transfer)
        self.session.commit()
        self.session.refresh(transfer)
        logger.info(f"User {user_id} offered {day} meal for week {week_start_date}")
        return transfer

    def get_available_transfers(self, week_start_date: str) -> list[dict]:
        return self.store.all(
            """
            SELECT mt.*, u.email, u.employee_name
            FROM meal_transfers mt
            JOIN users u ON mt.from_user_id = u.id
            WHERE mt.week_start_date = :week AND mt.status = :status
            ORDER BY mt.created_at DESC, mt.id DESC
            """,
            {"week": week_start_date, "status": AVAILABLE},
        )

    def claim_transfer(self, transfer_id: int, user_id: int) -> MealTransfer:
        transfer = self.session.get(MealTransfer, transfer_id)
        if transfer is None:
            raise NotFound("Meal transfer not found")
        if transfer.from_user_id == user_id:
            raise ValidationError("You cannot claim your own meal")
        if transfer.status != AVAILABLE:
            raise Conflict("This meal has already been claimed")

        transfer.status = CLAIMED
        transfer.claimed_by_user_id = user_id
        transfer.claimed_at = utcnow()
        self.session.add(transfer)
        self.session.commit()
        self.session.refresh(transfer)
        logger.info(f"Meal transfer {transfer_id} claimed by user {user_id}")
        return transfer

    def cancel_transfer(self, transfer_id: int, user_id: int):
        transfer = self.session.get(MealTransfer, transfer_id)
        if transfer is None:
            raise NotFound("Meal transfer not found")
        if transfer.from_user_id != user_id:
            raise Forbidden("You can only cancel your own meal transfers")
        self.session.delete(transfer)
        self.session.commit()

    def get_my_transfer(self, user_id: int, week_start_date: str, day_of_week: str) -> MealTransfer | None:
        return self.session.exec(
            select(MealTransfer)
            .where(MealTransfer.from_user_id == user_id)
            .where(MealTransfer.week_start_date == week_start_date)
            .where(MealTransfer.day_of_week == day_of_week.lower())
        ).first()

    def get_passed_meals(self, user_id: int, week_start_date: str) -> dict[str, bool]:
        passed = dict.fromkeys(DAYS, False)
        days = self.session.exec(
            select(MealTransfer.day_of_week)
            .where(MealTransfer.from_user_id == user_id)
            .where(MealTransfer.week_start_date == week_start_date)
        ).all()
        for day in days:
            passed[day.lower()] = True
        return passed

    # ===== menu copies =====

    def get_all_menus(self, week_start_date: str) -> list[dict]:
        parse_week(week_start_date)
        return self.store.all(
            f"""
            SELECT {SELECTION_COLUMNS}, u.email, u.employee_name
            FROM meal_selections ms
            JOIN users u ON ms.user_id = u.id
            WHERE ms.week_start_date = :week AND u.is_active = :active
            ORDER BY u.employee_name
            """,
            {"week": week_start_date, "active": True},
        )

    def copy_menu(
        self, user_id: int, copied_from_user_id: int, week_start_date: str, day_of_week: str, menu_details: str
    ) -> MenuCopy:
        parse_week(week_start_date)
        day = require_day(day_of_week)
        if copied_from_user_id == user_id:
            raise ValidationError("You cannot copy your own menu")
        self.get_user(copied_from_user_id)
        self.locks.ensure_can_edit(user_id, week_start_date)

        copy = self.session.exec(
            select(MenuCopy)
            .where(MenuCopy.user_id == user_id)
            .where(MenuCopy.week_start_date == week_start_date)
            .where(MenuCopy.day_of_week == day)
        ).first()
        if copy is None:
            copy = MenuCopy(
                user_id=user_id,
                copied_from_user_id=copied_from_user_id,
                week_start_date=week_start_date,
                day_of_week=day,
                menu_details=menu_details,
            )
        copy.copied_from_user_id = copied_from_user_id
        copy.menu_details = menu_details
        copy.created_at = utcnow()
        self.session.add(copy)

        selection = self.locks.get_selection(user_id, week_start_date)
        if selection is None:
            selection = MealSelection(user_id=user_id, week_start_date=week_start_date)
        setattr(selection, day, menu_details)
        selection.updated_at = utcnow()
        self.session.add(selection)

        self.session.commit()
        self.session.refresh(copy)
        logger.info(f"User {user_id} copied {day} menu from user {copied_from_user_id}")
        return copy

    def get_menu_copies(self, week_start_date: str, day_of_week: str) -> list[dict]:
        return self.store.all(
            """
            SELECT mc.*, u.email, u.employee_name,
                   uf.email AS copied_from_email, uf.employee_name AS copied_from_name
            FROM menu_copies mc
            JOIN users u ON mc.user_id = u.id
            JOIN users uf ON mc.copied_from_user_id = uf.id
            WHERE mc.week_start_date = :week AND mc.day_of_week = :day
            ORDER BY mc.created_at DESC, mc.id DESC
            """,
            {"week": week_start_date, "day": day_of_week.lower()},
        )

    def get_menu_copies_for_user(self, copied_from_user_id: int, week_start_date: str, day_of_week: str) -> list[dict]:
        return self.store.all(
            """
            SELECT mc.*, u.email, u.employee_name
            FROM menu_copies mc
            JOIN users u ON mc.user_id = u.id
            WHERE mc.copied_from_user_id = :user_id AND mc.week_start_date = :week AND mc.day_of_week = :day
            ORDER BY mc.created_at DESC, mc.id DESC
            """,
            {"user_id": copied_from_user_id, "week": week_start_date, "day": day_of_week.lower()},
        )

    # ===== invitations =====

    def send_invitation(self, admin: User, email: str, is_admin: bool = False) -> dict:
        if not validate_email(email):
            raise ValidationError(domain_error_message())
        email = normalize_email(email)

        existing = self.get_user_by_email(email)
        if existing and existing.is_active:
            raise ValidationError("User already exists with this email")

        now = datetime.now(UTC)
        pending = self.session.exec(
            select(Invitation).where(Invitation.email == email).where(Invitation.status == "pending")
        ).all()
        if any(as_utc(i.expires_at) > now for i in pending):
            raise ValidationError("A pending invitation already exists for this email")

        invitation = Invitation(
            email=email,
            invitation_token=generate_token(),
            is_admin=is_admin,
            invited_by=admin.id,
            created_at=now,
            expires_at=now + INVITATION_TTL,
        )
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(invitation)

        result = self.notifier.send_invitation_email(email, invitation.invitation_token, is_admin, admin.email)
        if not result.get("success"):
            logger.warning(f"Invitation email to {email} not sent: {result.get('error')}")
        logger.info(f"Invitation created for {email} by {admin.email}")
        return {
            "success": True,
            "invitation": {"id": invitation.id, "email": email, "is_admin": is_admin, "expires_at": invitation.expires_at},
            "email_sent": bool(result.get("success")),
        }

    def validate_invitation(self, token: str) -> Invitation:
        invitation = self.session.exec(select(Invitation).where(Invitation.invitation_token == token)).first()
        if invitation is None:
            raise ValidationError("Invalid invitation token")
        if invitation.status != "pending":
            raise ValidationError("Invitation has already been used")
        if datetime.now(UTC) > as_utc(invitation.expires_at):
            raise ValidationError("Invitation has expired")
        existing = self.get_user_by_email(invitation.email)
        if existing and existing.is_active:
            raise ValidationError("User account already exists")
        return invitation

    def accept_invitation(self, token: str, password: str) -> User:
        invitation = self.validate_invitation(token)
        strength = validate_password_strength(password)
        if not strength["is_valid"]:
            raise ValidationError(
                "Password does not meet security requirements", {"details": ". ".join(strength["feedback"])}
            )

        user = self.get_user_by_email(invitation.email)
        if user is None:
            user = self._find_placeholder(extract_name_from_email(invitation.email))
        if user is None:
            user = User(email=invitation.email, employee_name=extract_name_from_email(invitation.email))
        user.email = invitation.email
        user.password_hash = generate_password_hash(password)
        user.is_active = True
        if invitation.is_admin:
            user.is_admin = True
        self.session.add(user)

        invitation.status = "used"
        invitation.used_at = utcnow()
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"User account created for {invitation.email} from invitation")
        return user

    def get_pending_invitations(self) -> list[dict]:
        rows = self.store.all(
            """
            SELECT i.id, i.email, i.is_admin, i.created_at, i.expires_at, i.status,
                   u.email AS invited_by_email
            FROM user_invitations i
            LEFT JOIN users u ON i.invited_by = u.id
            WHERE i.status = 'pending'
            ORDER BY i.created_at DESC, i.id DESC
            """
        )
        now = datetime.now(UTC)
        pending = []
        for row in rows:
            expires_at = row["expires_at"]
            if isinstance(expires_at, str):
                expires_at = datetime.fromisoformat(expires_at)
            if as_utc(expires_at) > now:
                pending.append(row)
        return pending

    def cancel_invitation(self, invitation_id: int) -> Invitation:
        invitation = self.session.get(Invitation, invitation_id)
        if invitation is None:
            raise NotFound("Invitation not found")
        invitation.status = "cancelled"
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(invitation)
        return invitation

    # ===== weeks / admin =====

    def get_all_weeks(self) -> list[str]:
        weeks = set()
        for column in (ImportedMeal.week_start_date, MealOption.week_start_date, MealSelection.week_start_date):
            weeks.update(self.session.exec(select(column).distinct()).all())
        return sorted(weeks, reverse=True)

    def delete_week_data(self, week_start_date: str) -> dict:
        parse_week(week_start_date)
        deleted = {}
        for model in (MealReview, MealSelection, ImportedMeal, MealOption, UploadHistory):
            result = self.session.execute(delete(model).where(model.week_start_date == week_start_date))
            deleted[model.__tablename__] = result.rowcount
        self.session.commit()
        logger.info(f"Deleted data for week {week_start_date}: {deleted}")
        return deleted

    # ===== search =====

    def get_search_weeks(self) -> list[str]:
        latest = self.get_latest_imported_week()
        return [latest] if latest else []

    def search_by_name(self, name: str) -> dict:
        """Substring search in the latest imported week, falling back to older ones."""
        if not name or not name.strip():
            raise ValidationError("Name parameter required")
        latest = self.get_latest_imported_week()
        if not latest:
            return {"meals": [], "isFromPreviousWeek": False, "week": None, "currentWeek": None}

        term = name.strip().lower()
        weeks = self.session.exec(
            select(ImportedMeal.week_start_date).distinct().order_by(ImportedMeal.week_start_date.desc())
        ).all()
        for week in weeks:
            meals = [m for m in self.get_all_selections(week) if term in (m.get("employee_name") or "").lower()]
            if meals:
                return {"meals": meals, "isFromPreviousWeek": week != latest, "week": week, "currentWeek": latest}
        return {"meals": [], "isFromPreviousWeek": False, "week": latest, "currentWeek": latest}

    # ===== feedback =====

    def send_feedback(self, user: User, subject: str, message: str) -> dict:
        if not subject or not subject.strip() or not message or not message.strip():
            raise ValidationError("Subject and message are required")
        to = os.getenv("FEEDBACK_EMAIL") or os.getenv("ADMIN_EMAIL")
        if not to:
            raise ExternalServiceError("Feedback recipient is not configured")
        result = self.notifier.send_feedback(to, subject, message, user.employee_name, user.email)
        if not result.get("success"):
            raise ExternalServiceError("Failed to send feedback", {"details": result.get("error")})
        logger.info(f"Feedback sent by {user.email}")
        return {"success": True, "message": "Feedback sent"}
