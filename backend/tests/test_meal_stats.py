from io import BytesIO

from openpyxl import load_workbook

from meal_stats import (
    build_orders_sheets,
    build_statistics_sheets,
    category_maps,
    compute_statistics,
    export_filename,
    format_selection,
    split_items,
)
from spreadsheets import write_workbook

OPTIONS = [
    {"category": "Meniu 1", "monday": "Ciorba\nFriptura", "tuesday": "Supa", "wednesday": "", "thursday": "", "friday": ""},
    {"category": "Salata", "monday": "Salata verde", "tuesday": "", "wednesday": "", "thursday": "", "friday": ""},
]


def test_split_items():
    assert split_items("Meniu 1 | Salata") == ["Meniu 1", "Salata"]
    assert split_items(" Meniu 1 |  | ") == ["Meniu 1"]
    assert split_items("") == []
    assert split_items(None) == []


def test_compute_statistics_counts_days_and_items():
    selections = [
        {"employee_name": "Ana Pop", "monday": "Meniu 1 | Salata"},
        {"employee_name": "Ion Rusu", "monday": "Meniu 1", "tuesday": "Meniu 2"},
    ]

    stats = compute_statistics(selections, [], total_employees=5)

    assert stats["dailyStats"]["monday"] == 2
    assert stats["dailyStats"]["tuesday"] == 1
    assert stats["dailyStats"]["friday"] == 0
    assert stats["totalMeals"] == 3
    assert stats["totalEmployees"] == 5
    assert stats["mealStats"][0] == {"meal": "Meniu 1", "count": 2}
    assert {"meal": "Salata", "count": 1} in stats["mealStats"]


def test_compute_statistics_unions_employee_names():
    selections = [{"employee_name": "Ana Pop", "monday": "Meniu 1"}, {"employee_name": None, "monday": "Meniu 1"}]
    imported = [{"employee_name": "Ana Pop", "tuesday": "Meniu 2"}, {"employee_name": "Vasile Rusu", "monday": ""}]

    stats = compute_statistics(selections, imported, total_employees=3)

    assert stats["employeesWithSelections"] == 2


def test_export_filename_uses_friday_month():
    assert export_filename("FOOD ", "2025-10-13") == "FOOD 13-17.10.2025.xlsx"
    assert export_filename("Statistics_", "2025-09-29") == "Statistics_29-3.10.2025.xlsx"
    assert export_filename("FOOD ", "2025-12-29") == "FOOD 29-2.01.2026.xlsx"


def test_statistics_sheets():
    rows = [
        {"employee_name": "Ana Pop", "monday": "Meniu 1 | Salata"},
        {"employee_name": "Ion Rusu", "monday": "Meniu 1", "friday": "Salata"},
    ]

    daily, overall = build_statistics_sheets(rows)

    assert daily.header == ["Zi/Day", "Meniu 1", "Salata", "TOTAL"]
    assert daily.rows[0] == ["LUNI/MONDAY", 2, 1, 3]
    assert daily.rows[4] == ["VINERI/FRIDAY", 0, 1, 1]
    assert daily.total_row == ["TOTAL", 2, 2, 4]
    assert overall.total_row == ["TOTAL", 4]
    assert overall.notes["D2"] == "Pentru a crea un grafic Pie Chart:"


def test_format_selection_expands_categories():
    contents, item_category = category_maps(OPTIONS)

    assert format_selection("monday", "Meniu 1", contents, item_category) == "Ciorba; Friptura"
    # An item of a "Meniu" set stands for the whole set
    assert format_selection("monday", "Ciorba", contents, item_category) == "Ciorba; Friptura"
    assert format_selection("monday", "Salata verde", contents, item_category) == "Salata verde"
    assert format_selection("monday", "Meniu 1 | Desert", contents, item_category) == "Ciorba; Friptura; Desert"
    assert format_selection("monday", "", contents, item_category) == ""


def test_orders_workbook_roundtrip():
    rows = [{"employee_name": None, "email": "ana.pop@devhub.tech", "monday": "Meniu 1", "tuesday": ""}]

    data = write_workbook(build_orders_sheets(rows, OPTIONS))

    wb = load_workbook(BytesIO(data))
    assert wb.sheetnames == ["Meal Orders", "Statistics"]
    orders = wb["Meal Orders"]
    assert orders["A1"].value == "Angajat/Employee"
    assert orders["A2"].value == "Ana Pop"
    assert orders["B2"].value == "Ciorba; Friptura"
    assert orders["C2"].value == "-"
    stats = wb["Statistics"]
    assert stats["A2"].value == "Meniu 1"
    assert stats["A3"].value == "TOTAL"
    assert stats["B3"].value == 1
