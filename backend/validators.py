"""Pure validation and parsing helpers.

Nothing in here touches the database; everything is safe to call from
request validators, the importer and tests alike.
"""

import hashlib
import os
import re
import secrets
from datetime import date, datetime

DEFAULT_ALLOWED_DOMAINS = "@devhub.tech,@titans.net,@solidstake.com"
VALID_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EXTENSION_RE = re.compile(r"\.(xlsx|xls|csv)$", re.IGNORECASE)
PERIOD_RE = re.compile(r"(\d{1,2})\s*-\s*(\d{1,2})")
NUMERIC_MONTH_RE = re.compile(r"\d{1,2}\s*-\s*\d{1,2}[\s.]+(\d{1,2})(?:\.(\d{4}))?")
MONTH_NAME_RE = re.compile(
    r"\b(JAN(?:UARY)?|FEB(?:RUARY)?|MAR(?:CH)?|APR(?:IL)?|MAY|JUNE?|JULY?|AUG(?:UST)?"
    r"|SEPT?(?:EMBER)?|OCT(?:OBER)?|NOV(?:EMBER)?|DEC(?:EMBER)?)\b",
    re.IGNORECASE,
)
YEAR_RE = re.compile(r"\b(20\d{2})\b")

MONTHS = {
    "JAN": 1, "JANUARY": 1,
    "FEB": 2, "FEBRUARY": 2,
    "MAR": 3, "MARCH": 3,
    "APR": 4, "APRIL": 4,
    "MAY": 5,
    "JUN": 6, "JUNE": 6,
    "JUL": 7, "JULY": 7,
    "AUG": 8, "AUGUST": 8,
    "SEP": 9, "SEPT": 9, "SEPTEMBER": 9,
    "OCT": 10, "OCTOBER": 10,
    "NOV": 11, "NOVEMBER": 11,
    "DEC": 12, "DECEMBER": 12,
}

COMMON_PASSWORD_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (r"^password", r"^admin", r"^123456", r"^qwerty", r"^letmein", r"^welcome")
]
SEQUENTIAL_RE = re.compile(
    r"(?:abc|bcd|cde|def|efg|fgh|ghi|hij|ijk|jkl|klm|lmn|mno|nop|opq|pqr|qrs|rst|stu|tuv|uvw|vwx|wxy|xyz"
    r"|012|123|234|345|456|567|678|789)",
    re.IGNORECASE,
)
REPEATED_RE = re.compile(r"(.)\1{2,}")


def allowed_domains() -> list[str]:
    raw = os.getenv("ALLOWED_EMAIL_DOMAINS", DEFAULT_ALLOWED_DOMAINS)
    return [d.strip().lower() for d in raw.split(",") if d.strip()]


def validate_email(email: str | None) -> bool:
    """True if the address is well formed and belongs to an allowed domain."""
    if not email or not isinstance(email, str):
        return False
    email_lower = email.strip().lower()
    if not any(email_lower.endswith(domain) for domain in allowed_domains()):
        return False
    return bool(EMAIL_RE.match(email_lower))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def extract_name_from_email(email: str | None) -> str | None:
    """``alexandru.popescu@devhub.tech`` -> ``Alexandru Popescu``."""
    if not email:
        return None
    local_part = email.strip().lower().split("@")[0]
    parts = [part[:1].upper() + part[1:] for part in local_part.split(".")]
    return " ".join(parts)


def reverse_name_order(name: str | None) -> str | None:
    """Swap first and last tokens: ``Popescu Alexandru`` <-> ``Alexandru Popescu``.

    For names with more than two tokens the first token moves to the end.
    """
    if not name:
        return None
    parts = name.split()
    if len(parts) < 2:
        return name
    return f"{' '.join(parts[1:])} {parts[0]}"


def strip_extension(filename: str) -> str:
    return EXTENSION_RE.sub("", filename)


def parse_period_from_filename(filename: str | None) -> str | None:
    """``FOOD 13-17.xlsx`` -> ``13-17``."""
    if not filename:
        return None
    match = PERIOD_RE.search(strip_extension(filename))
    if match:
        return f"{match.group(1)}-{match.group(2)}"
    return None


def parse_month_year_from_filename(filename: str | None, today: date | None = None) -> tuple[int, int] | None:
    """Return ``(month, year)`` from ``FOOD 13-17.10.2025`` or ``FOOD 13-17 OCT 2025``.

    Month is 1-based. A missing year defaults to the current one.
    """
    if not filename:
        return None
    today = today or date.today()
    name = strip_extension(filename)

    numeric = NUMERIC_MONTH_RE.search(name)
    if numeric:
        month = int(numeric.group(1))
        year = int(numeric.group(2)) if numeric.group(2) else today.year
        return month, year

    named = MONTH_NAME_RE.search(name)
    if named:
        month = MONTHS[named.group(1).upper()]
        year_match = YEAR_RE.search(name)
        year = int(year_match.group(1)) if year_match else today.year
        return month, year

    return None


def period_days(period: str | None) -> set[int]:
    """Days of month covered by a ``DD-DD`` period; wraps across month end."""
    if not period:
        return set()
    match = PERIOD_RE.fullmatch(period.strip())
    if not match:
        return set()
    start, end = int(match.group(1)), int(match.group(2))
    if end >= start:
        return set(range(start, end + 1))
    return set(range(start, 32)) | set(range(1, end + 1))


def periods_overlap(first: str | None, second: str | None) -> bool:
    return bool(period_days(first) & period_days(second))


def calculate_file_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def is_valid_day(day: str | None) -> bool:
    return bool(day) and day.lower() in VALID_DAYS


def is_valid_date(value: str | None) -> bool:
    """Strict ``YYYY-MM-DD`` calendar date."""
    if not value or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def count_words(text: str | None) -> int:
    if not text or not text.strip():
        return 0
    return len(text.split())


def validate_password_strength(password: str) -> dict:
    """Score a password; ``is_valid`` once the score reaches 4."""
    result = {"is_valid": False, "score": 0, "feedback": [], "strength": "weak"}
    password = password or ""

    if len(password) < 8:
        result["feedback"].append("Password must be at least 8 characters long")
    elif len(password) < 12:
        result["score"] += 1
        result["feedback"].append("Consider using a longer password (12+ characters)")
    else:
        result["score"] += 2

    checks = [
        (r"[a-z]", "Add lowercase letters"),
        (r"[A-Z]", "Add uppercase letters"),
        (r"[0-9]", "Add numbers"),
        (r"[^a-zA-Z0-9]", "Add special characters"),
    ]
    for pattern, advice in checks:
        if re.search(pattern, password):
            result["score"] += 1
        else:
            result["feedback"].append(advice)

    if any(p.search(password) for p in COMMON_PASSWORD_PATTERNS):
        result["score"] -= 2
        result["feedback"].append("Avoid common password patterns")
    if SEQUENTIAL_RE.search(password):
        result["score"] -= 1
        result["feedback"].append("Avoid sequential characters")
    if REPEATED_RE.search(password):
        result["score"] -= 1
        result["feedback"].append("Avoid repeated characters")

    # Too short is never acceptable, whatever the complexity score
    result["is_valid"] = len(password) >= 8 and result["score"] >= 4
    if result["score"] >= 6:
        result["strength"] = "strong"
    elif result["score"] >= 4:
        result["strength"] = "medium"
    return result


def generate_token(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)
