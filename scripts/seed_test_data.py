"""
Seed the local database with Baku demo data: companies, service points,
managers, cleaners, assignments and a handful of today's tasks.

Usage:
  python scripts/seed_test_data.py

Existing tasks, assignments, routes, points, companies and MANAGER/CLEANER
users are wiped first. The admin user is kept if it already exists.
"""

import json
import os
import random
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load environment variables before settings are read
from dotenv import load_dotenv
load_dotenv()

from feedbackatm.db import SessionLocal, Base, engine
from feedbackatm.models.models import (
    CleanerAssignment,
    CleaningTask,
    Company,
    Route,
    RoutePoint,
    ServicePoint,
    ServicePointType,
    TaskStatus,
    User,
    UserRole,
)
from feedbackatm.auth.security import get_password_hash
from feedbackatm.services.time_rules import day_window


COMPANIES = [
    ("unibank", "Unibank", "Unibank Commercial Bank"),
    ("pashabank", "Pasha Bank", "Pasha Bank OJSC"),
    ("kapitalbank", "Kapital Bank", "Kapital Bank OJSC"),
    ("mintcliner", "Mint Cliner", "Public Transport Infrastructure"),
]

# key, count, name pattern, type, address pattern, base lat, lat spread, base lng, lng spread
POINT_BATCHES = [
    ("unibank", 7, "Unibank ATM #{i}", ServicePointType.ATM, "Baku, Street {n10}, Branch {i}", 40.37, 0.05, 49.82, 0.08),
    ("pashabank", 5, "Pasha Bank ATM #{i}", ServicePointType.ATM, "Baku, Ave {n5}, Center {i}", 40.38, 0.04, 49.84, 0.06),
    ("kapitalbank", 3, "Kapital Bank ATM #{i}", ServicePointType.ATM, "Baku, Metro {i}", 40.39, 0.03, 49.85, 0.05),
    ("mintcliner", 10, "Bus Stop #{i}", ServicePointType.BUS_STOP, "Baku, Main Road, Stop {i}", 40.40, 0.06, 49.86, 0.10),
]

MANAGERS = [
    ("manager_unibank", "m1@unibank.az", "unibank"),
    ("manager_mint", "m2@mint.az", "mintcliner"),
]

CLEANERS = [
    ("cleaner_ali", "ali@mint.az", "mintcliner"),
    ("cleaner_vusal", "vusal@mint.az", "mintcliner"),
    ("cleaner_leila", "leila@mint.az", "mintcliner"),
    ("cleaner_samir", "samir@unibank.az", "unibank"),
    ("cleaner_elvin", "elvin@pashabank.az", "pashabank"),
    ("cleaner_nargiz", "nargiz@kapital.az", "kapitalbank"),
]


def wipe(session) -> None:
    session.query(CleaningTask).delete(synchronize_session=False)
    session.query(CleanerAssignment).delete(synchronize_session=False)
    session.query(RoutePoint).delete(synchronize_session=False)
    session.query(Route).delete(synchronize_session=False)
    session.query(User).filter(
        User.role.in_([UserRole.MANAGER.value, UserRole.CLEANER.value])
    ).delete(synchronize_session=False)
    session.query(ServicePoint).delete(synchronize_session=False)
    # Company-bound users other than managers/cleaners are detached rather than removed
    session.query(User).filter(User.company_id.isnot(None)).update(
        {User.company_id: None}, synchronize_session=False
    )
    session.query(Company).delete(synchronize_session=False)
    session.flush()


def ensure_admin(session) -> User:
    admin = session.query(User).filter(User.username == "admin").first()
    if admin:
        return admin
    admin = User(username="admin", password_hash=get_password_hash("admin123"), role=UserRole.ADMIN.value)
    session.add(admin)
    session.flush()
    return admin


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        wipe(session)
        ensure_admin(session)

        companies = {}
        for key, name, description in COMPANIES:
            company = Company(name=name, address="Baku, Azerbaijan", description=description)
            session.add(company)
            companies[key] = company
        session.flush()
        print("Companies created:", ", ".join(c.name for c in companies.values()))

        points = []
        for key, count, name_pat, ptype, addr_pat, lat, lat_spread, lng, lng_spread in POINT_BATCHES:
            for i in range(1, count + 1):
                point = ServicePoint(
                    name=name_pat.format(i=i),
                    type=ptype.value,
                    address=addr_pat.format(i=i, n5=i * 5, n10=i * 10),
                    latitude=lat + random.random() * lat_spread,
                    longitude=lng + random.random() * lng_spread,
                    company_id=companies[key].id,
                )
                session.add(point)
                points.append(point)
        session.flush()
        print(f"Service points created ({len(points)} total)")

        manager_hash = get_password_hash("manager123")
        for username, email, key in MANAGERS:
            session.add(User(
                username=username,
                email=email,
                password_hash=manager_hash,
                role=UserRole.MANAGER.value,
                company_id=companies[key].id,
            ))
        cleaner_hash = get_password_hash("cleaner123")
        cleaners = []
        for username, email, key in CLEANERS:
            cleaner = User(
                username=username,
                email=email,
                password_hash=cleaner_hash,
                role=UserRole.CLEANER.value,
                company_id=companies[key].id,
            )
            session.add(cleaner)
            cleaners.append(cleaner)
        session.flush()
        print(f"Users created ({len(MANAGERS)} managers, {len(cleaners)} cleaners)")

        # Bus stops round-robin across the three Mint cleaners, Unibank ATMs to Samir
        owner = {}
        bus_stops = [p for p in points if p.type == ServicePointType.BUS_STOP.value]
        for i, stop in enumerate(bus_stops):
            owner[stop.id] = cleaners[i % 3]
        for atm in (p for p in points if p.company_id == companies["unibank"].id):
            owner[atm.id] = cleaners[3]
        for point_id, cleaner in owner.items():
            session.add(CleanerAssignment(cleaner_id=cleaner.id, service_point_id=point_id))
        session.flush()
        print(f"Cleaner assignments created ({len(owner)})")

        day, start, _ = day_window()
        now = datetime.utcnow()
        created = 0
        for i, point in enumerate(points[:15]):
            cleaner = owner.get(point.id)
            if cleaner is None:
                continue
            if i < 5:
                status = TaskStatus.COMPLETED
            elif i < 10:
                status = TaskStatus.IN_PROGRESS
            else:
                status = TaskStatus.PENDING
            done = status == TaskStatus.COMPLETED
            session.add(CleaningTask(
                service_point_id=point.id,
                cleaner_id=cleaner.id,
                status=status.value,
                scheduled_at=start,
                generation_day=day,
                completed_at=now if done else None,
                notes="Everything is clean" if done else None,
                photos=json.dumps(["/uploads/sample.jpg"]) if done else None,
            ))
            created += 1
        session.commit()
        print(f"Sample tasks created ({created})")
        print("Logins:")
        print("  Admin: admin / admin123")
        print("  Manager (Mint): manager_mint / manager123")
        print("  Cleaners: cleaner_ali, cleaner_vusal, cleaner_leila, cleaner_samir... / cleaner123")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
