"""Weekly meal counts and the admin export workbooks."""
from collections import Counter
from datetime import date, timedelta

from models import DAYS
from spreadsheets import SheetModel
from validators import extract_name_from_email

DAY_LABELS = ("LUNI/MONDAY", "MARTI/TUESDAY", "MIERCURI/WEDNESDAY", "JOI/THURSDAY", "VINERI/FRIDAY")
PIE_CHART_NOTES = {
    "D2": "Pentru a crea un grafic Pie Chart:",
    "D3": "1. Selectați datele din coloanele A și B",
    "D4": "2. Click Insert → Charts → Pie Chart",
    "D5": "3. Graficul va fi creat automat",
}


def split_items(value: str | None) -> list[str]:
    """``"Meniu 1 | Salata"`` -> ``["Meniu 1", "Salata"]``."""
    if not value:
        return []
    return [part.strip() for part in value.split("|") if part.strip()]


def display_name(row: dict) -> str:
    return row.get("employee_name") or extract_name_from_email(row.get("email")) or row.get("email") or ""


def compute_statistics(selections: list[dict], imported: list[dict], total_employees: int) -> dict:
    """Aggregate one week of registered and imported selections.

    A row counts once per day it has at least one item; items are counted
    individually for the per-meal tally.
    """
    rows = list(selections) + list(imported)

    names = {row.get("employee_name") for row in rows}
    names.discard(None)
    names.discard("")

    daily_stats = {}
    meal_counts = Counter()
    for day in DAYS:
        total_for_day = 0
        for row in rows:
            items = split_items(row.get(day))
            if items:
                total_for_day += 1
            meal_counts.update(items)
        daily_stats[day] = total_for_day

    return {
        "totalEmployees": total_employees,
        "employeesWithSelections": len(names),
        "totalMeals": sum(daily_stats.values()),
        "dailyStats": daily_stats,
        "mealStats": [{"meal": meal, "count": count} for meal, count in _sorted_counts(meal_counts)],
    }


def _sorted_counts(counter: Counter) -> list[tuple[str, int]]:
    # Stable on ties: first-seen order
    return sorted(counter.items(), key=lambda item: item[1], reverse=True)


def per_day_counts(rows: list[dict]) -> dict[str, Counter]:
    return {day: Counter(item for row in rows for item in split_items(row.get(day))) for day in DAYS}


def export_filename(prefix: str, week_start_date: str) -> str:
    """``FOOD 13-17.10.2025.xlsx``; month and year are Friday's."""
    start = date.fromisoformat(week_start_date)
    end = start + timedelta(days=4)
    return f"{prefix}{start.day}-{end.day}.{end.month:02d}.{end.year}.xlsx"


def build_statistics_sheets(rows: list[dict]) -> list[SheetModel]:
    per_day = per_day_counts(rows)
    meals = sorted({meal for counts in per_day.values() for meal in counts})

    daily = SheetModel(
        title="Daily Statistics",
        header=["Zi/Day", *meals, "TOTAL"],
        column_widths={1: 25, **{i: 20 for i in range(2, len(meals) + 2)}, len(meals) + 2: 15},
    )
    for day, label in zip(DAYS, DAY_LABELS):
        counts = [per_day[day][meal] for meal in meals]
        daily.rows.append([label, *counts, sum(counts)])
    meal_totals = [sum(per_day[day][meal] for day in DAYS) for meal in meals]
    daily.total_row = ["TOTAL", *meal_totals, sum(meal_totals)]

    overall_counts = Counter()
    for counts in per_day.values():
        overall_counts.update(counts)
    ranked = _sorted_counts(overall_counts)
    overall = SheetModel(
        title="Overall Statistics",
        header=["Fel de Mâncare / Meal", "Număr Comenzi / Count"],
        rows=[[meal, count] for meal, count in ranked],
        total_row=["TOTAL", sum(overall_counts.values())],
        column_widths={1: 50, 2: 20, 4: 40},
        notes=dict(PIE_CHART_NOTES),
    )
    return [daily, overall]


def category_maps(options: list[dict]) -> tuple[dict[str, str], dict[str, str]]:
    """Map ``day:category`` to its joined contents and ``day:item`` to its category."""
    contents, item_category = {}, {}
    for option in options:
        category = option["category"]
        for day in DAYS:
            items = [item.strip() for item in (option.get(day) or "").split("\n") if item.strip()]
            if not items:
                continue
            contents[f"{day}:{category}"] = "; ".join(items)
            for item in items:
                item_category[f"{day}:{item}"] = category
    return contents, item_category


def format_selection(day: str, value: str | None, contents: dict[str, str], item_category: dict[str, str]) -> str:
    """Expand a selected category (or an item of a "Meniu" set) to its full contents."""
    formatted = []
    for part in split_items(value):
        if f"{day}:{part}" in contents:
            formatted.append(contents[f"{day}:{part}"])
            continue
        category = item_category.get(f"{day}:{part}")
        if category and "meniu" in category.lower():
            formatted.append(contents.get(f"{day}:{category}", part))
        else:
            formatted.append(part)
    return "; ".join(formatted)


def build_orders_sheets(rows: list[dict], options: list[dict]) -> list[SheetModel]:
    contents, item_category = category_maps(options)

    orders = SheetModel(
        title="Meal Orders",
        header=["Angajat/Employee", *DAY_LABELS],
        column_widths={1: 25, **{i: 50 for i in range(2, len(DAY_LABELS) + 2)}},
        wrap_text=True,
    )
    for row in rows:
        orders.rows.append(
            [display_name(row), *(format_selection(day, row.get(day), contents, item_category) or "-" for day in DAYS)]
        )

    counts = Counter()
    for row in rows:
        for day in DAYS:
            counts.update(split_items(row.get(day)))
    stats = SheetModel(
        title="Statistics",
        header=["Fel de Mâncare", "Număr Selecții"],
        rows=[[meal, count] for meal, count in _sorted_counts(counts)],
        total_row=["TOTAL", sum(counts.values())],
        column_widths={1: 50, 2: 20},
    )
    return [orders, stats]
