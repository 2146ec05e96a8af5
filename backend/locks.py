"""Week lock / self-lock / unlock-request workflow.

Two independent layers gate writes to a user's weekly selection:

* the admin week lock (``WeekSettings.is_locked``), which individual users can
  be exempted from through ``WeekUnlock`` rows, and
* the user's own self-lock (``MealSelection.is_locked``), which only an admin
  can release by approving an ``UnlockRequest``.

Weeks that have not started yet are never admin-locked.
"""
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from db import Store
from errors import Conflict, Forbidden, NotFound, ValidationError
from models import MealSelection, UnlockRequest, User, WeekSettings, WeekUnlock

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def parse_week(week_start_date: str) -> date:
    try:
        return datetime.strptime(week_start_date, "%Y-%m-%d").date()
    except (TypeError, ValueError) as e:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD") from e


class WeekLocks:
    def __init__(self, store: Store, today: Callable[[], date] = date.today):
        self.store = store
        self.session = store.session
        self.today = today

    # ----- admin week lock -----

    def get_week_settings(self, week_start_date: str) -> WeekSettings | None:
        return self.session.get(WeekSettings, week_start_date)

    def get_unlocked_users(self, week_start_date: str) -> list[int]:
        rows = self.session.exec(
            select(WeekUnlock.user_id).where(WeekUnlock.week_start_date == week_start_date).order_by(WeekUnlock.user_id)
        ).all()
        return list(rows)

    def describe_week(self, week_start_date: str) -> dict:
        settings = self.get_week_settings(week_start_date)
        return {
            "week_start_date": week_start_date,
            "is_locked": bool(settings and settings.is_locked),
            "locked_at": settings.locked_at if settings else None,
            "unlocked_users": self.get_unlocked_users(week_start_date),
        }

    def _set_week_lock(self, week_start_date: str, locked: bool):
        parse_week(week_start_date)
        settings = self.get_week_settings(week_start_date)
        if settings is None:
            settings = WeekSettings(week_start_date=week_start_date)
            self.session.add(settings)
        settings.is_locked = locked
        settings.locked_at = datetime.now(UTC) if locked else None
        # Exemptions never survive a lock change
        self.session.execute(delete(WeekUnlock).where(WeekUnlock.week_start_date == week_start_date))
        self.session.commit()

    def lock_week(self, week_start_date: str):
        self._set_week_lock(week_start_date, True)
        logger.info(f"Week {week_start_date} locked")

    def unlock_week(self, week_start_date: str):
        self._set_week_lock(week_start_date, False)
        logger.info(f"Week {week_start_date} unlocked")

    def _add_exemption(self, week_start_date: str, user_id: int):
        if self.get_week_settings(week_start_date) is None:
            self.session.add(WeekSettings(week_start_date=week_start_date, is_locked=False))
        if self.session.get(WeekUnlock, (week_start_date, user_id)) is None:
            self.session.add(WeekUnlock(week_start_date=week_start_date, user_id=user_id))

    def grant_user_unlock(self, week_start_date: str, user_id: int):
        parse_week(week_start_date)
        if self.session.get(User, user_id) is None:
            raise NotFound("User not found")
        self._add_exemption(week_start_date, user_id)
        self.session.commit()
        logger.info(f"Granted unlock for user {user_id} on week {week_start_date}")

    def revoke_user_unlock(self, week_start_date: str, user_id: int):
        parse_week(week_start_date)
        self.session.execute(
            delete(WeekUnlock).where(WeekUnlock.week_start_date == week_start_date, WeekUnlock.user_id == user_id)
        )
        self.session.commit()
        logger.info(f"Revoked unlock for user {user_id} on week {week_start_date}")

    def is_week_locked_for_user(self, week_start_date: str, user_id: int) -> bool:
        if self.today() < parse_week(week_start_date):
            return False
        settings = self.get_week_settings(week_start_date)
        if not settings or not settings.is_locked:
            return False
        return self.session.get(WeekUnlock, (week_start_date, user_id)) is None

    # ----- self lock -----

    def get_selection(self, user_id: int, week_start_date: str) -> MealSelection | None:
        return self.session.exec(
            select(MealSelection)
            .where(MealSelection.user_id == user_id)
            .where(MealSelection.week_start_date == week_start_date)
        ).first()

    def is_user_selection_locked(self, user_id: int, week_start_date: str) -> bool:
        selection = self.get_selection(user_id, week_start_date)
        return bool(selection and selection.is_locked)

    def ensure_can_edit(self, user_id: int, week_start_date: str):
        """Raise Forbidden unless both lock layers allow a write."""
        if self.is_week_locked_for_user(week_start_date, user_id):
            raise Forbidden("The week is locked and selections can no longer be changed", {"locked": True})
        if self.is_user_selection_locked(user_id, week_start_date):
            raise Forbidden(
                "Your selection is locked. Request an unlock before making changes",
                {"locked": True, "userLocked": True},
            )

    def lock_user_selection(self, user_id: int, week_start_date: str):
        selection = self.get_selection(user_id, week_start_date)
        if selection is None:
            raise NotFound("There is no selection for this week")
        selection.is_locked = True
        self.session.add(selection)
        self.session.commit()
        logger.info(f"User {user_id} locked selection for week {week_start_date}")

    # ----- unlock requests -----

    def get_pending_request(self, user_id: int, week_start_date: str) -> UnlockRequest | None:
        return self.session.exec(
            select(UnlockRequest)
            .where(UnlockRequest.user_id == user_id)
            .where(UnlockRequest.week_start_date == week_start_date)
            .where(UnlockRequest.status == PENDING)
        ).first()

    def has_pending_unlock_request(self, user_id: int, week_start_date: str) -> bool:
        return self.get_pending_request(user_id, week_start_date) is not None

    def create_unlock_request(self, user_id: int, week_start_date: str) -> UnlockRequest:
        if self.is_week_locked_for_user(week_start_date, user_id):
            raise Forbidden(
                "The week is locked by an administrator. You cannot request an unlock.",
                {"locked": True},
            )

        existing = self.get_pending_request(user_id, week_start_date)
        if existing:
            return existing

        selection = self.get_selection(user_id, week_start_date)
        if selection is None:
            raise NotFound("There is no selection for this week")
        if not selection.is_locked:
            raise ValidationError("Your selection is not locked")

        request = UnlockRequest(user_id=user_id, week_start_date=week_start_date, status=PENDING)
        self.session.add(request)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost the race against a concurrent submit; the index kept theirs
            self.session.rollback()
            existing = self.get_pending_request(user_id, week_start_date)
            if existing is None:
                raise
            return existing
        self.session.refresh(request)
        logger.info(f"Unlock request {request.id} created for user {user_id}, week {week_start_date}")
        return request

    def get_pending_unlock_requests(self) -> list[dict]:
        return self.store.all(
            """
            SELECT ur.id, ur.user_id, ur.week_start_date, ur.status, ur.requested_at,
                   u.email, u.employee_name
            FROM unlock_requests ur
            JOIN users u ON ur.user_id = u.id
            WHERE ur.status = :status
            ORDER BY ur.requested_at DESC, ur.id DESC
            """,
            {"status": PENDING},
        )

    def _get_open_request(self, request_id: int) -> UnlockRequest:
        request = self.session.get(UnlockRequest, request_id)
        if request is None:
            raise NotFound("Request not found")
        if request.status != PENDING:
            raise Conflict(f"Request was already {request.status}")
        return request

    def _close_request(self, request: UnlockRequest, status: str, admin_id: int):
        request.status = status
        request.processed_at = datetime.now(UTC)
        request.processed_by = admin_id
        self.session.add(request)

    def approve_unlock_request(self, request_id: int, admin_id: int) -> UnlockRequest:
        request = self._get_open_request(request_id)

        selection = self.get_selection(request.user_id, request.week_start_date)
        if selection is not None:
            selection.is_locked = False
            self.session.add(selection)

        # An admin-locked week would otherwise still block the user
        settings = self.get_week_settings(request.week_start_date)
        if settings and settings.is_locked:
            self._add_exemption(request.week_start_date, request.user_id)

        self._close_request(request, APPROVED, admin_id)
        self.session.commit()
        self.session.refresh(request)
        logger.info(f"Unlock request {request_id} approved by {admin_id}")
        return request

    def reject_unlock_request(self, request_id: int, admin_id: int) -> UnlockRequest:
        request = self._get_open_request(request_id)
        self._close_request(request, REJECTED, admin_id)
        self.session.commit()
        self.session.refresh(request)
        logger.info(f"Unlock request {request_id} rejected by {admin_id}")
        return request
