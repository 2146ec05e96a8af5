from datetime import date

import pytest
from sqlmodel import select

from conftest import OPTIONS_ROWS, make_xlsx
from errors import DuplicatePeriod, DuplicateUpload, ValidationError
from importer import derive_week_start, next_occurrence, parse_meal_options
from models import ImportedMeal, MealOption, MealSelection, UploadHistory, User

SELECTION_HEADER = ["Nume", "Divizie", "Luni", "Marti", "Miercuri", "Joi", "Vineri"]


def test_week_start_from_period_and_filename():
    today = date(2025, 9, 1)
    assert derive_week_start("FOOD 13-17.10.2025.xlsx", "13-17", None, today) == "2025-10-13"
    assert derive_week_start("FOOD 13-17 OCT 2025.xlsx", "13-17", None, today) == "2025-10-13"


def test_week_start_next_occurrence():
    # Today is the start day itself
    assert derive_week_start("FOOD 13-17.xlsx", "13-17", None, date(2025, 10, 13)) == "2025-10-13"
    # Start day already passed this month
    assert derive_week_start("FOOD 13-17.xlsx", "13-17", None, date(2025, 10, 20)) == "2025-11-13"
    # Rolls over the year end
    assert next_occurrence(5, date(2025, 12, 20)) == date(2026, 1, 5)
    # November has no 31st
    assert next_occurrence(31, date(2025, 11, 5)) == date(2025, 12, 31)


def test_week_start_without_period():
    today = date(2025, 10, 15)
    assert derive_week_start("menu.xlsx", None, "2025-10-13", today) == "2025-10-13"
    assert derive_week_start("menu.xlsx", None, None, today) == "2025-10-15"
    with pytest.raises(ValidationError):
        derive_week_start("menu.xlsx", None, "13/10/2025", today)


def test_week_start_invalid_month():
    with pytest.raises(ValidationError):
        derive_week_start("FOOD 13-17.14.2025.xlsx", "13-17", None, date(2025, 10, 1))


def test_parse_meal_options_header_heuristics():
    categories = parse_meal_options(OPTIONS_ROWS)

    assert list(categories) == ["Meniu 1", "Salata"]
    assert categories["Meniu 1"]["monday"] == ["Ciorba de legume", "Friptura de porc"]
    assert categories["Meniu 1"]["friday"] == ["Bors", "Sarmale"]
    # Identical cells without a keyword are neither a header nor content
    assert "Desert" not in categories["Meniu 1"]["monday"]
    assert categories["Salata"]["wednesday"] == []
    # A row with an empty Monday cell is skipped
    assert "Rand fara luni" not in categories["Salata"]["tuesday"]


def test_parse_meal_options_ignores_rows_before_first_header():
    rows = [
        ["", "LUNI", "MARTI", "MIERCURI", "JOI", "VINERI"],
        ["", "Paine", "Paine", "Apa", "Apa", "Paine"],
        ["", "Extra", "Extra", "Extra", "Extra", "Extra"],
        ["", "Cartofi", "Orez", "", "", ""],
    ]
    categories = parse_meal_options(rows)
    assert list(categories) == ["Extra"]
    assert categories["Extra"]["monday"] == ["Cartofi"]


def test_import_meal_options(service, make_user, notifier, test_session):
    make_user("maria.ionescu@devhub.tech", "Maria Ionescu")
    make_user("admin@devhub.tech", is_admin=True)
    data = make_xlsx(OPTIONS_ROWS)

    result = service.upload_meal_options("FOOD 13-17.10.2025.xlsx", data)

    assert result["week_start_date"] == "2025-10-13"
    assert result["period"] == "13-17"
    assert result["categories"] == 2
    options = test_session.exec(select(MealOption).order_by(MealOption.id)).all()
    assert [o.category for o in options] == ["Meniu 1", "Salata"]
    assert options[0].monday == "Ciorba de legume\nFriptura de porc"
    assert options[0].source_file == "FOOD 13-17.10.2025.xlsx"

    history = test_session.exec(select(UploadHistory)).one()
    assert history.upload_type == "meal_options"
    assert history.row_count == 2
    # Only non-admin users are notified
    assert notifier.sent == [("meal_options", "2025-10-13", ["maria.ionescu@devhub.tech"])]


def test_duplicate_upload_rejected(service, test_session):
    data = make_xlsx(OPTIONS_ROWS)
    service.upload_meal_options("FOOD 13-17.10.2025.xlsx", data)

    with pytest.raises(DuplicateUpload) as exc_info:
        service.upload_meal_options("FOOD 13-17.10.2025 copy.xlsx", data)

    details = exc_info.value.details["details"]
    assert details["filename"] == "FOOD 13-17.10.2025.xlsx"
    assert details["period"] == "13-17"
    assert details["upload_date"]
    assert exc_info.value.status_code == 409
    assert len(test_session.exec(select(MealOption)).all()) == 2
    assert len(test_session.exec(select(UploadHistory)).all()) == 1


def test_overlapping_period_rejected(service):
    service.upload_meal_options("FOOD 13-17.10.2025.xlsx", make_xlsx(OPTIONS_ROWS))
    other = make_xlsx(OPTIONS_ROWS + [["", "Meniu 2", "Meniu 2", "Meniu 2", "Meniu 2", "Meniu 2"]])

    with pytest.raises(DuplicatePeriod) as exc_info:
        service.upload_meal_options("FOOD 15-19.10.2025.xlsx", other)
    assert exc_info.value.details["details"]["filename"] == "FOOD 13-17.10.2025.xlsx"


def test_options_require_sheet1(service):
    with pytest.raises(ValidationError) as exc_info:
        service.upload_meal_options("FOOD 13-17.10.2025.xlsx", make_xlsx(OPTIONS_ROWS, title="Meniu"))
    assert "Sheet1" in exc_info.value.message


def test_options_without_categories(service):
    rows = [["", "LUNI", "MARTI", "MIERCURI", "JOI", "VINERI"], ["", "Paine", "Apa", "", "", ""]]
    with pytest.raises(ValidationError):
        service.upload_meal_options("FOOD 13-17.10.2025.xlsx", make_xlsx(rows))


def test_unreadable_file(service):
    with pytest.raises(ValidationError):
        service.upload_meal_options("FOOD 13-17.10.2025.xlsx", b"not a spreadsheet")


def test_import_selections_matches_names(service, make_user, test_session):
    maria = make_user("maria.georgescu@devhub.tech")
    alex = make_user("alexandru.popescu@devhub.tech", "Alexandru Popescu")
    data = make_xlsx(
        [
            SELECTION_HEADER,
            ["Maria Georgescu", "IT", "Meniu 1", "Meniu 1", "", "Salata", "Meniu 1"],
            ["Popescu Alexandru", "HR", "Meniu 2", "", "Meniu 1 | Salata", "", ""],
            ["Vasile Unknown", "Ops", "Meniu 1 | Salata", "", "", "", "Meniu 2"],
        ]
    )

    result = service.import_meal_selections("COMENZI 13-17.10.2025.xlsx", data)

    assert result["imported"] == 3
    assert result["failed"] == 0
    assert result["details"] == []
    assert result["week_start_date"] == "2025-10-13"

    alex_selection = test_session.exec(select(MealSelection).where(MealSelection.user_id == alex.id)).one()
    assert alex_selection.monday == "Meniu 2"
    assert alex_selection.wednesday == "Meniu 1 | Salata"
    maria_selection = test_session.exec(select(MealSelection).where(MealSelection.user_id == maria.id)).one()
    assert maria_selection.thursday == "Salata"

    imported = test_session.exec(select(ImportedMeal)).one()
    assert imported.employee_name == "Vasile Unknown"
    assert imported.division == "Ops"
    assert imported.friday == "Meniu 2"

    placeholder = test_session.exec(select(User).where(User.employee_name == "Vasile Unknown")).one()
    assert placeholder.is_active is False
    assert placeholder.email is None

    history = test_session.exec(select(UploadHistory)).one()
    assert history.upload_type == "meal_selections"
    assert history.row_count == 3


def test_import_selections_skips_existing_placeholder(service, make_user, test_session):
    make_user(employee_name="Vasile Unknown", is_active=False)
    make_user("admin@devhub.tech", "Vasile Unknown", is_admin=True)
    data = make_xlsx([SELECTION_HEADER, ["Vasile Unknown", "Ops", "Meniu 1", "", "", "", ""]])

    result = service.import_meal_selections("COMENZI 20-24.10.2025.xlsx", data)

    assert result["imported"] == 1
    # The admin never matches; the existing placeholder does
    placeholders = test_session.exec(select(User).where(User.email.is_(None))).all()
    assert len(placeholders) == 1


def test_import_selections_period_separate_from_options(service):
    service.upload_meal_options("FOOD 13-17.10.2025.xlsx", make_xlsx(OPTIONS_ROWS))
    data = make_xlsx([SELECTION_HEADER, ["Ana Pop", "IT", "Meniu 1", "", "", "", ""]])

    result = service.import_meal_selections("COMENZI 13-17.10.2025.xlsx", data)
    assert result["imported"] == 1


def test_import_selections_empty_sheet(service):
    with pytest.raises(ValidationError):
        service.import_meal_selections("COMENZI 13-17.10.2025.xlsx", make_xlsx([SELECTION_HEADER]))


def test_repeated_unknown_name_counted_once(service, test_session):
    data = make_xlsx(
        [
            SELECTION_HEADER,
            ["Vasile Unknown", "Ops", "Meniu 1", "", "", "", ""],
            ["Vasile Unknown", "Ops", "Meniu 2", "", "", "", ""],
        ]
    )
    test_session.add(MealOption(week_start_date="2025-10-13", category="Meniu 1"))
    test_session.commit()

    result = service.import_meal_selections("COMENZI 13-17.10.2025.xlsx", data)

    assert result["imported"] == 2
    # The later row overwrites the imported entry; no selection goes to the new placeholder
    assert test_session.exec(select(MealSelection)).all() == []
    imported = test_session.exec(select(ImportedMeal)).one()
    assert imported.monday == "Meniu 2"
    assert len(test_session.exec(select(User).where(User.email.is_(None))).all()) == 1

    stats = service.get_statistics("2025-10-13")["statistics"]
    assert stats["dailyStats"]["monday"] == 1
    assert stats["employeesWithSelections"] == 1
