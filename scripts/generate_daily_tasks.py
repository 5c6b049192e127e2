"""
Run one daily task generation pass for every cleaner with assignments.

Usage:
    python scripts/generate_daily_tasks.py [--sweep-overdue-company COMPANY_ID]
"""
import sys
import os
import argparse
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load environment variables before settings are read
from dotenv import load_dotenv
load_dotenv()

from feedbackatm.db import SessionLocal, Base, engine
from feedbackatm.logging import setup_logging
from feedbackatm.services.scheduler import run_generation_once
from feedbackatm.services.task_generator import sweep_overdue_for_company


def main():
    parser = argparse.ArgumentParser(description="Generate today's cleaning tasks for all assignments")
    parser.add_argument(
        "--sweep-overdue-company",
        help="Also mark stale PENDING/IN_PROGRESS tasks of this company as OVERDUE",
    )
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args()

    setup_logging()
    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    created = run_generation_once(SessionLocal)
    if created is None:
        print("Generation failed; see log output")
        sys.exit(1)
    print(f"Created {created} task(s)")

    if args.sweep_overdue_company:
        db = SessionLocal()
        try:
            swept = sweep_overdue_for_company(db, uuid.UUID(args.sweep_overdue_company))
            print(f"Marked {swept} task(s) overdue")
        finally:
            db.close()


if __name__ == "__main__":
    main()
