from datetime import date, timedelta

from sqlmodel import Session, select
from werkzeug.security import generate_password_hash

from db import engine
from models import MealOption, MealSelection, User

DEMO_PASSWORD = "Demo!Passw0rd"


def current_week_start(today: date | None = None) -> str:
    today = today or date.today()
    return (today - timedelta(days=today.weekday())).isoformat()


def seed_database():
    """Seed the database with sample users, a menu and a few selections."""
    with Session(engine) as session:
        # Check if data already exists
        existing = session.exec(select(MealOption)).first()
        if existing:
            print("Database already has data, skipping seed.")
            return

        week = current_week_start()

        users = [
            User(
                email="alexandru.popescu@devhub.tech",
                password_hash=generate_password_hash(DEMO_PASSWORD),
                employee_name="Alexandru Popescu",
            ),
            User(
                email="maria.ionescu@devhub.tech",
                password_hash=generate_password_hash(DEMO_PASSWORD),
                employee_name="Maria Ionescu",
            ),
            # Imported employee who has not registered yet
            User(employee_name="Vasile Rusu", is_active=False),
        ]
        session.add_all(users)

        options = [
            MealOption(
                week_start_date=week,
                category="Meniu 1",
                monday="Ciorba de legume\nFriptura de porc",
                tuesday="Supa de pui\nPeste la cuptor",
                wednesday="Ciorba de burta\nPui cu orez",
                thursday="Supa crema\nTocana de vita",
                friday="Bors\nSarmale",
            ),
            MealOption(
                week_start_date=week,
                category="Meniu 2",
                monday="Supa crema\nPaste carbonara",
                tuesday="Ciorba taraneasca\nSnitel",
                wednesday="Supa de rosii\nRisotto",
                thursday="Ciorba de perisoare\nMusaca",
                friday="Supa de legume\nPizza",
            ),
            MealOption(
                week_start_date=week,
                category="Salata",
                monday="Salata verde",
                tuesday="Salata de vinete",
                wednesday="Salata Caesar",
                thursday="Salata greceasca",
                friday="Salata de varza",
            ),
        ]
        session.add_all(options)
        session.commit()

        alexandru, maria = users[0], users[1]
        selections = [
            MealSelection(
                user_id=alexandru.id,
                week_start_date=week,
                monday="Meniu 1",
                tuesday="Meniu 2 | Salata",
                wednesday="Meniu 1",
                friday="Meniu 2",
            ),
            MealSelection(
                user_id=maria.id,
                week_start_date=week,
                monday="Salata",
                tuesday="Meniu 1",
                thursday="Meniu 2 | Salata",
            ),
        ]
        session.add_all(selections)
        session.commit()
        print(
            f"Seeded week {week} with {len(users)} users, {len(options)} meal options "
            f"and {len(selections)} selections."
        )


if __name__ == "__main__":
    from db import create_db_and_tables

    create_db_and_tables()
    seed_database()
