import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from db import create_db_and_tables, engine, get_session
from errors import Forbidden, MealAppError, Unauthorized, ValidationError
from models import User
from notifications import EmailNotifier
from schemas import (
    AcceptInvitationRequest,
    AuthResponse,
    CreateUserRequest,
    CredentialsRequest,
    EmployeeNameRequest,
    FeedbackRequest,
    InvitationRequest,
    MenuCopyRequest,
    PasswordCheckRequest,
    ReviewRequest,
    SelectionRequest,
    TransferRequest,
    UserResponse,
    UserUnlockRequest,
    WeekRequest,
)
from service import MealService, public_user
from spreadsheets import XLSX_MEDIA_TYPE, write_workbook
from tokens import decode_token, extract_bearer, issue_token
from validators import validate_password_strength

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
SPREADSHEET_EXTENSIONS = (".xlsx",)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and default admin on startup."""
    create_db_and_tables()
    with Session(engine) as session:
        MealService(session).ensure_default_admin()
    logger.info("Database initialized")
    yield


# Create FastAPI app
app = FastAPI(title="Meal Orders API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins in development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MealAppError)
async def handle_domain_error(request: Request, exc: MealAppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(IntegrityError)
async def handle_integrity_error(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(status_code=409, content={"error": "Conflict with existing data"})


# ----- dependencies -----


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_service(
    session: Session = Depends(get_session), notifier: EmailNotifier = Depends(get_notifier)
) -> MealService:
    return MealService(session, notifier=notifier)


def get_current_user(
    authorization: str | None = Header(default=None), session: Session = Depends(get_session)
) -> User:
    """Resolve the caller from the ``Authorization: Bearer`` token."""
    token = extract_bearer(authorization)
    if token is None:
        raise Unauthorized("Authentication required")
    user = session.get(User, decode_token(token))
    # Deactivated accounts lose access even with an unexpired token
    if user is None or not user.is_active:
        raise Unauthorized("Authentication required")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


def read_upload(file: UploadFile) -> bytes:
    filename = file.filename or ""
    if not filename.lower().endswith(SPREADSHEET_EXTENSIONS):
        raise ValidationError("Only .xlsx Excel files are allowed; save legacy .xls files as .xlsx first")
    data = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise MealAppError(f"File too large (max {MAX_UPLOAD_BYTES // (1024 * 1024)} MB)", status_code=413)
    if not data:
        raise ValidationError("No file uploaded")
    return data


def xlsx_response(filename: str, sheets) -> Response:
    return Response(
        content=write_workbook(sheets),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ----- auth -----


@app.post("/auth/register", response_model=AuthResponse)
def register(request: CredentialsRequest, service: MealService = Depends(get_service)):
    user = service.register(request.email, request.password)
    return {"success": True, "token": issue_token(user), "user": public_user(user)}


@app.post("/auth/login", response_model=AuthResponse)
def login(request: CredentialsRequest, service: MealService = Depends(get_service)):
    user = service.login(request.email, request.password)
    logger.info(f"User logged in: {user.email} (admin: {user.is_admin})")
    return {"success": True, "token": issue_token(user), "user": public_user(user)}


@app.get("/auth/me", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)):
    return public_user(user)


@app.post("/auth/check-password")
def check_password(request: PasswordCheckRequest):
    return validate_password_strength(request.password)


# ----- users -----


@app.get("/users/employees")
def get_employees(service: MealService = Depends(get_service), user: User = Depends(get_current_user)):
    return {"employees": service.get_employee_names()}


@app.get("/users/employees/names")
def get_employee_names(
    q: str | None = Query(None, description="Filter names containing this text"),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return {"names": service.autocomplete_names(q)}


@app.post("/users/me/employee-name", response_model=AuthResponse)
def set_employee_name(
    request: EmployeeNameRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    updated = service.set_employee_name(user.id, request.employee_name)
    return {"success": True, "token": issue_token(updated), "user": public_user(updated)}


@app.post("/users", response_model=UserResponse)
def create_user(
    request: CreateUserRequest, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    return public_user(service.create_user(request.email, request.password, request.is_admin))


@app.get("/users", response_model=list[UserResponse])
def list_users(service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    return [public_user(u) for u in service.list_users()]


# ----- meal options -----


@app.get("/meal-options")
def get_meal_options(
    week: str | None = Query(None, description="Week start date (YYYY-MM-DD); defaults to the latest week"),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return service.get_meal_options(week)


@app.get("/meal-options/latest-week")
def get_latest_options_week(service: MealService = Depends(get_service), user: User = Depends(get_current_user)):
    return {"week_start_date": service.get_latest_options_week()}


@app.post("/meal-options/upload")
def upload_meal_options(
    file: UploadFile = File(...),
    week_start_date: str | None = Form(None),
    service: MealService = Depends(get_service),
    admin: User = Depends(require_admin),
):
    data = read_upload(file)
    logger.info(f"Meal options upload by {admin.email}: {file.filename} ({len(data)} bytes)")
    try:
        return service.upload_meal_options(file.filename, data, week_start_date)
    except SQLAlchemyError as e:
        service.session.rollback()
        logger.error(f"Error saving meal options: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e)) from e


# ----- meal selections -----


@app.post("/meal-selections")
def save_selection(
    request: SelectionRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    selection = service.save_selection(user.id, request.week_start_date, request.days())
    return {"success": True, "selection": selection}


@app.get("/meal-selections/me")
def get_my_selection(
    week: str = Query(..., description="Week start date (YYYY-MM-DD)"),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return service.get_my_selection(user.id, week)


@app.get("/meal-selections/history")
def get_history(service: MealService = Depends(get_service), user: User = Depends(get_current_user)):
    return {"history": service.get_history(user.id)}


@app.get("/meal-selections/all")
def get_all_selections(
    week: str = Query(..., description="Week start date (YYYY-MM-DD)"),
    service: MealService = Depends(get_service),
    admin: User = Depends(require_admin),
):
    return {"selections": service.get_all_selections(week), "week_start_date": week}


@app.post("/meal-selections/import")
def import_meal_selections(
    file: UploadFile = File(...),
    week_start_date: str | None = Form(None),
    service: MealService = Depends(get_service),
    admin: User = Depends(require_admin),
):
    data = read_upload(file)
    logger.info(f"Meal selections import by {admin.email}: {file.filename} ({len(data)} bytes)")
    try:
        return service.import_meal_selections(file.filename, data, week_start_date)
    except SQLAlchemyError as e:
        service.session.rollback()
        logger.error(f"Error importing meal selections: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@app.get("/meal-selections/statistics")
def get_statistics(
    week: str | None = Query(None, description="Week start date; defaults to the latest options week"),
    service: MealService = Depends(get_service),
    admin: User = Depends(require_admin),
):
    return service.get_statistics(week)


@app.get("/meal-selections/statistics/export")
def export_statistics(
    week: str | None = Query(None),
    service: MealService = Depends(get_service),
    admin: User = Depends(require_admin),
):
    filename, sheets = service.export_statistics(week)
    return xlsx_response(filename, sheets)


@app.get("/meal-selections/export")
def export_selections(
    week: str | None = Query(None),
    service: MealService = Depends(get_service),
    admin: User = Depends(require_admin),
):
    filename, sheets = service.export_selections(week)
    return xlsx_response(filename, sheets)


@app.post("/meal-selections/lock")
def lock_my_selection(
    request: WeekRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    service.locks.lock_user_selection(user.id, request.week_start_date)
    return {"success": True, "message": "Selection locked"}


@app.post("/meal-selections/unlock-request")
def request_unlock(
    request: WeekRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    unlock_request = service.locks.create_unlock_request(user.id, request.week_start_date)
    return {"success": True, "request": unlock_request}


# ----- reviews -----


@app.post("/reviews")
def save_review(
    request: ReviewRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    review = service.save_review(
        user.id, request.meal_name, request.week_start_date, request.day_of_week, request.review_text, request.rating
    )
    return {"success": True, "review": review}


@app.get("/reviews/mine")
def get_my_review(
    meal_name: str = Query(...),
    week: str = Query(...),
    day: str = Query(...),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return {"review": service.get_my_review(user.id, meal_name, week, day)}


@app.get("/reviews/meal")
def get_meal_reviews(
    meal_name: str = Query(...),
    week: str = Query(...),
    day: str = Query(...),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return {"reviews": service.get_reviews_for_meal(meal_name, week, day)}


@app.get("/reviews/recent")
def get_recent_reviews(
    meal_name: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"reviews": service.get_recent_reviews(meal_name)}


@app.get("/reviews/me")
def get_my_reviews(service: MealService = Depends(get_service), user: User = Depends(get_current_user)):
    return {"reviews": service.get_my_reviews(user.id)}


@app.get("/reviews/prioritized")
def get_prioritized_reviews(
    meal_name: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"reviews": service.get_prioritized_reviews(meal_name, user.id)}


# ----- meal transfers -----


@app.post("/meal-transfers")
def create_transfer(
    request: TransferRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    transfer = service.create_transfer(user.id, request.week_start_date, request.day_of_week, request.meal_details)
    return {"success": True, "transfer": transfer}


@app.get("/meal-transfers/available")
def get_available_transfers(
    week: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"transfers": service.get_available_transfers(week)}


@app.post("/meal-transfers/{transfer_id}/claim")
def claim_transfer(
    transfer_id: int, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"success": True, "transfer": service.claim_transfer(transfer_id, user.id)}


@app.delete("/meal-transfers/{transfer_id}")
def cancel_transfer(
    transfer_id: int, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    service.cancel_transfer(transfer_id, user.id)
    return {"success": True, "message": "Meal transfer cancelled"}


@app.get("/meal-transfers/check")
def check_transfer(
    week: str = Query(...),
    day: str = Query(...),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    transfer = service.get_my_transfer(user.id, week, day)
    return {"hasTransfer": transfer is not None, "transfer": transfer}


@app.get("/meal-transfers/passed")
def get_passed_meals(
    week: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"passedMeals": service.get_passed_meals(user.id, week)}


# ----- menus -----


@app.get("/menus/all")
def get_all_menus(
    week: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"menus": service.get_all_menus(week)}


@app.post("/menus/copy")
def copy_menu(
    request: MenuCopyRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    copy = service.copy_menu(
        user.id, request.copied_from_user_id, request.week_start_date, request.day_of_week, request.menu_details
    )
    return {"success": True, "copy": copy}


@app.get("/menus/copies")
def get_menu_copies(
    week: str = Query(...),
    day: str = Query(...),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return {"copies": service.get_menu_copies(week, day)}


@app.get("/menus/copies/{user_id}")
def get_menu_copies_for_user(
    user_id: int,
    week: str = Query(...),
    day: str = Query(...),
    service: MealService = Depends(get_service),
    user: User = Depends(get_current_user),
):
    return {"copies": service.get_menu_copies_for_user(user_id, week, day)}


# ----- search -----


@app.get("/search/weeks")
def get_search_weeks(service: MealService = Depends(get_service), user: User = Depends(get_current_user)):
    return {"weeks": service.get_search_weeks()}


@app.get("/search/meals")
def get_search_meals(
    week: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return {"meals": service.get_all_selections(week), "week_start_date": week}


@app.get("/search")
def search_by_name(
    name: str = Query(...), service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return service.search_by_name(name)


# ----- admin -----


@app.get("/admin/weeks")
def get_all_weeks(service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    return {"weeks": service.get_all_weeks()}


@app.delete("/admin/weeks/{week_start_date}")
def delete_week(week_start_date: str, service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    logger.info(f"Delete week {week_start_date} requested by {admin.email}")
    return {"success": True, "deleted": service.delete_week_data(week_start_date)}


@app.get("/admin/weeks/{week_start_date}/settings")
def get_week_settings(
    week_start_date: str, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    return service.locks.describe_week(week_start_date)


@app.post("/admin/weeks/lock")
def lock_week(request: WeekRequest, service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    service.locks.lock_week(request.week_start_date)
    return {"success": True, **service.locks.describe_week(request.week_start_date)}


@app.post("/admin/weeks/unlock")
def unlock_week(request: WeekRequest, service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    service.locks.unlock_week(request.week_start_date)
    return {"success": True, **service.locks.describe_week(request.week_start_date)}


@app.post("/admin/weeks/grant-unlock")
def grant_user_unlock(
    request: UserUnlockRequest, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    service.locks.grant_user_unlock(request.week_start_date, request.user_id)
    return {"success": True, **service.locks.describe_week(request.week_start_date)}


@app.post("/admin/weeks/revoke-unlock")
def revoke_user_unlock(
    request: UserUnlockRequest, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    service.locks.revoke_user_unlock(request.week_start_date, request.user_id)
    return {"success": True, **service.locks.describe_week(request.week_start_date)}


@app.get("/admin/unlock-requests")
def get_unlock_requests(service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    return {"requests": service.locks.get_pending_unlock_requests()}


@app.post("/admin/unlock-requests/{request_id}/approve")
def approve_unlock_request(
    request_id: int, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    return {"success": True, "request": service.locks.approve_unlock_request(request_id, admin.id)}


@app.post("/admin/unlock-requests/{request_id}/reject")
def reject_unlock_request(
    request_id: int, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    return {"success": True, "request": service.locks.reject_unlock_request(request_id, admin.id)}


# ----- invitations -----


@app.post("/invitations")
def send_invitation(
    request: InvitationRequest, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    return service.send_invitation(admin, request.email, request.is_admin)


@app.get("/invitations/validate")
def validate_invitation(token: str = Query(...), service: MealService = Depends(get_service)):
    invitation = service.validate_invitation(token)
    return {"valid": True, "email": invitation.email, "is_admin": invitation.is_admin}


@app.post("/invitations/accept")
def accept_invitation(request: AcceptInvitationRequest, service: MealService = Depends(get_service)):
    user = service.accept_invitation(request.token, request.password)
    return {"success": True, "message": "Account created successfully. You can now log in.", "email": user.email}


@app.get("/invitations/pending")
def get_pending_invitations(service: MealService = Depends(get_service), admin: User = Depends(require_admin)):
    return {"invitations": service.get_pending_invitations()}


@app.delete("/invitations/{invitation_id}")
def cancel_invitation(
    invitation_id: int, service: MealService = Depends(get_service), admin: User = Depends(require_admin)
):
    service.cancel_invitation(invitation_id)
    return {"success": True, "message": "Invitation cancelled"}


# ----- feedback -----


@app.post("/feedback")
def send_feedback(
    request: FeedbackRequest, service: MealService = Depends(get_service), user: User = Depends(get_current_user)
):
    return service.send_feedback(user, request.subject, request.message)


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "Meal Orders API", "docs": "/docs"}
