from datetime import date

import pytest

from validators import (
    calculate_file_hash,
    count_words,
    extract_name_from_email,
    is_valid_date,
    is_valid_day,
    parse_month_year_from_filename,
    parse_period_from_filename,
    periods_overlap,
    reverse_name_order,
    validate_email,
    validate_password_strength,
)


def test_validate_email_checks_domain():
    assert validate_email("alexandru.popescu@devhub.tech")
    assert validate_email("  Maria.Ion@TITANS.NET ")
    assert not validate_email("someone@gmail.com")
    assert not validate_email("")
    assert not validate_email(None)


def test_validate_email_respects_env(monkeypatch):
    monkeypatch.setenv("ALLOWED_EMAIL_DOMAINS", "@example.com")
    assert validate_email("a.b@example.com")
    assert not validate_email("a.b@devhub.tech")


def test_extract_name_from_email():
    assert extract_name_from_email("alexandru.popescu@devhub.tech") == "Alexandru Popescu"
    assert extract_name_from_email("ion@devhub.tech") == "Ion"
    assert extract_name_from_email(None) is None


def test_reverse_name_order():
    assert reverse_name_order("Popescu Alexandru") == "Alexandru Popescu"
    assert reverse_name_order("Ion") == "Ion"
    assert reverse_name_order("Popescu Ana Maria") == "Ana Maria Popescu"


def test_parse_period_from_filename():
    assert parse_period_from_filename("FOOD 13-17.xlsx") == "13-17"
    assert parse_period_from_filename("FOOD 13 - 17.10.2025.xlsx") == "13-17"
    assert parse_period_from_filename("menu.xlsx") is None
    assert parse_period_from_filename(None) is None


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("FOOD 13-17.10.2025.xlsx", (10, 2025)),
        ("FOOD 13-17.10.xlsx", (10, 2025)),
        ("FOOD 13-17 OCT 2025.xlsx", (10, 2025)),
        ("FOOD 1-5 December.xlsx", (12, 2025)),
        ("FOOD 13-17.xlsx", None),
    ],
)
def test_parse_month_year_from_filename(filename, expected):
    assert parse_month_year_from_filename(filename, today=date(2025, 6, 1)) == expected


def test_periods_overlap():
    assert periods_overlap("13-17", "13-17")
    assert periods_overlap("13-17", "15-19")
    assert not periods_overlap("13-17", "20-24")
    # Wraps across month end
    assert periods_overlap("29-2", "1-5")
    assert not periods_overlap("29-2", "3-7")
    assert not periods_overlap(None, "1-5")


def test_calculate_file_hash_is_md5():
    assert calculate_file_hash(b"abc") == "900150983cd24fb0d6963f7d28e17f72"


def test_day_and_date_checks():
    assert is_valid_day("Monday")
    assert not is_valid_day("saturday")
    assert is_valid_date("2025-10-13")
    assert not is_valid_date("2025-02-30")
    assert not is_valid_date("13.10.2025")


def test_count_words():
    assert count_words("  foarte   bun ") == 2
    assert count_words("") == 0
    assert count_words(None) == 0


def test_password_strength():
    strong = validate_password_strength("Str0ng!Passw0rd")
    assert strong["is_valid"] is True
    assert strong["strength"] == "strong"

    weak = validate_password_strength("password")
    assert weak["is_valid"] is False
    assert "Avoid common password patterns" in weak["feedback"]

    # Complex but too short is still rejected
    assert validate_password_strength("aB3$x")["is_valid"] is False
