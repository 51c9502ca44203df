"""
Seed the local database with a demo company, its workers and one posted job.

Usage:
  python scripts/seed_demo.py

This script is idempotent: the company is matched on its comp_code and
workers on their email. The demo job is only posted on the first run.
"""
import sys
import os
from datetime import date, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from shiftboard.db import SessionLocal, Base, engine
from shiftboard.models.models import Company, Job, Worker, WorkerAvailability
from shiftboard.auth.security import get_password_hash, principal_for
from shiftboard.services.job_lifecycle import create_job

COMP_CODE = "DEMO01"
DEMO_PASSWORD = "password123"


def ensure_company(session) -> Company:
    company = session.query(Company).filter(Company.comp_code == COMP_CODE).first()
    if company:
        return company
    company = Company(
        name="Demo Catering Ltd",
        email="ops@demo-catering.com",
        phone="+44 20 7946 0000",
        city="London",
        country="United Kingdom",
        password_hash=get_password_hash(DEMO_PASSWORD),
        comp_code=COMP_CODE,
    )
    session.add(company)
    session.flush()
    return company


def ensure_worker(session, name: str, email: str, slots) -> Worker:
    worker = session.query(Worker).filter(Worker.email == email).first()
    if worker is None:
        worker = Worker(
            name=name,
            email=email,
            password_hash=get_password_hash(DEMO_PASSWORD),
            approved=True,
            user_code=COMP_CODE,
            joining_date=date.today(),
        )
        session.add(worker)
    for day, shift in slots:
        if not worker.has_slot(day, shift):
            worker.availability.append(WorkerAvailability(date=day, shift=shift))
    return worker


def run():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        company = ensure_company(session)
        tomorrow = date.today() + timedelta(days=1)
        ensure_worker(session, "Alice Morgan", "alice@demo-catering.com", [(tomorrow, "AM")])
        ensure_worker(session, "Ben Carter", "ben@demo-catering.com", [(tomorrow, "AM"), (tomorrow, "PM")])
        ensure_worker(session, "Chloe Davies", "chloe@demo-catering.com", [(tomorrow, "PM")])
        session.commit()

        if session.query(Job).filter(Job.user_code == COMP_CODE).first() is None:
            outcome = create_job(
                session,
                principal_for(company),
                title="Wedding breakfast service",
                description="Front of house for a 120 cover wedding breakfast.",
                location="Kew Gardens, London",
                date=tomorrow,
                shift="AM",
                workers_required=2,
            )
            print(f"Posted job {outcome.job.id} with {len(outcome.job.invited_workers)} invitations")

        print(f"Company login: {company.email} / {DEMO_PASSWORD} (code {COMP_CODE})")
        print("Worker logins: alice@, ben@, chloe@demo-catering.com / " + DEMO_PASSWORD)
    finally:
        session.close()


if __name__ == "__main__":
    run()
