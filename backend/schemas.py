from pydantic import BaseModel, Field, field_validator

from validators import VALID_DAYS, is_valid_date


def _check_week(v: str) -> str:
    if not is_valid_date(v):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    return v


def _check_day(v: str) -> str:
    if v.lower() not in VALID_DAYS:
        raise ValueError(f"Day must be one of: {', '.join(VALID_DAYS)}")
    return v.lower()


class WeekRequest(BaseModel):
    week_start_date: str

    @field_validator("week_start_date")
    @classmethod
    def validate_week(cls, v):
        return _check_week(v)


class CredentialsRequest(BaseModel):
    email: str
    password: str


class CreateUserRequest(CredentialsRequest):
    is_admin: bool = False


class UserResponse(BaseModel):
    id: int
    email: str | None = None
    is_admin: bool
    employee_name: str | None = None
    is_active: bool


class AuthResponse(BaseModel):
    success: bool
    token: str | None = None
    user: UserResponse


class EmployeeNameRequest(BaseModel):
    employee_name: str


class SelectionRequest(WeekRequest):
    monday: str = ""
    tuesday: str = ""
    wednesday: str = ""
    thursday: str = ""
    friday: str = ""

    def days(self) -> dict[str, str]:
        return {day: getattr(self, day) for day in VALID_DAYS}


class UserUnlockRequest(WeekRequest):
    user_id: int


class ReviewRequest(WeekRequest):
    meal_name: str = Field(min_length=1)
    day_of_week: str
    review_text: str = ""
    rating: int | None = None

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, v):
        return _check_day(v)

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, v):
        if v is not None and not 1 <= v <= 5:
            raise ValueError("Rating must be between 1 and 5")
        return v


class TransferRequest(WeekRequest):
    day_of_week: str
    meal_details: str = Field(min_length=1)

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, v):
        return _check_day(v)


class MenuCopyRequest(WeekRequest):
    copied_from_user_id: int
    day_of_week: str
    menu_details: str

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, v):
        return _check_day(v)


class InvitationRequest(BaseModel):
    email: str
    is_admin: bool = False


class AcceptInvitationRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str


class FeedbackRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)


class PasswordCheckRequest(BaseModel):
    password: str
