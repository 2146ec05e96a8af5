from datetime import date

from sqlmodel import Session, select

import seed
from models import MealOption, MealSelection, User


def test_current_week_start():
    assert seed.current_week_start(date(2025, 10, 16)) == "2025-10-13"
    assert seed.current_week_start(date(2025, 10, 13)) == "2025-10-13"


def test_seed_database_runs_once(test_engine, monkeypatch):
    monkeypatch.setattr(seed, "engine", test_engine)

    seed.seed_database()
    seed.seed_database()

    with Session(test_engine) as session:
        assert len(session.exec(select(MealOption)).all()) == 3
        assert len(session.exec(select(MealSelection)).all()) == 2
        placeholder = session.exec(select(User).where(User.email.is_(None))).one()
        assert placeholder.is_active is False
