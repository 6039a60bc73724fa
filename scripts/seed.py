"""Seed a demo SiteTrack dataset: users, projects, milestones, tasks and attendance."""
import argparse
import asyncio
import logging
import random
import time
from datetime import date, datetime, timedelta

from sitetrack.config import settings
from sitetrack.database import async_session, create_schema, engine
from sitetrack.logging_config import setup_logging
from sitetrack.schemas import (
    ExpenseCreate,
    InvoiceCreate,
    InvoiceItemIn,
    MilestoneCreate,
    PaymentCreate,
    ProfileCreate,
    ProjectCreate,
    TaskCreate,
)
from sitetrack.services import (
    attendance_service,
    financial_service,
    invoice_service,
    milestone_service,
    payment_service,
    project_service,
    task_service,
    user_service,
)

logger = logging.getLogger("seed")

DEMO_PASSWORD = "sitetrack-demo"
SITES = ["Dubai Marina", "Downtown", "Business Bay", "Jumeirah", "Al Quoz", "Deira"]
TASK_TITLES = [
    "Site survey", "Foundation pour", "Steel fixing", "Blockwork", "MEP first fix",
    "Plastering", "Tiling", "Painting", "Snagging", "Handover inspection",
]
EXPENSE_CATEGORIES = ["materials", "equipment", "transport", "permits", "other"]


async def seed(small: bool = False, reset: bool = False) -> None:
    num_workers = 6 if small else 30
    num_projects = 2 if small else 10
    milestones_per_project = 2 if small else 4
    tasks_per_milestone = 3 if small else 8

    logger.info(
        "Seeding: %d workers, %d projects, %d milestones/project, %d tasks/milestone",
        num_workers, num_projects, milestones_per_project, tasks_per_milestone,
    )
    start = time.perf_counter()

    await create_schema(drop_first=reset)

    async with async_session() as db:
        admin = await user_service.create_user(db, ProfileCreate(
            full_name="Site Admin", email="admin@example.com", role="admin", password=DEMO_PASSWORD,
        ))
        supervisor = await user_service.create_user(db, ProfileCreate(
            full_name="Sam Supervisor", email="supervisor@example.com", role="supervisor",
            wage_type="monthly", monthly_salary=9000, password=DEMO_PASSWORD,
        ))
        workers = []
        for i in range(num_workers):
            workers.append(await user_service.create_user(db, ProfileCreate(
                full_name=f"Worker {i:02d}",
                email=f"worker{i:02d}@example.com",
                role="worker",
                wage_type="daily",
                daily_rate=random.choice([120, 150, 180, 200]),
                hourly_rate=random.choice([15, 20, 25]),
                password=DEMO_PASSWORD,
            )))
        logger.info("Created %d profiles", len(workers) + 2)

        today = date.today()
        for p in range(num_projects):
            project_start = today - timedelta(days=random.randint(10, 90))
            project = await project_service.create_project(db, ProjectCreate(
                name=f"Project {p + 1}: {random.choice(SITES)} Villa",
                site_location=random.choice(SITES),
                start_date=project_start,
                end_date=project_start + timedelta(days=180),
                total_budget=random.randint(50, 500) * 1000,
                received_amount=random.randint(0, 40) * 1000,
                currency=random.choice(["USD", "AED"]),
            ), admin["id"])

            for m in range(milestones_per_project):
                m_start = project_start + timedelta(days=30 * m)
                milestone = await milestone_service.create_milestone(db, MilestoneCreate(
                    project_id=project["id"],
                    name=f"Phase {m + 1}",
                    budget=random.randint(10, 100) * 1000,
                    start_date=m_start,
                    end_date=m_start + timedelta(days=29),
                    status="completed" if m_start + timedelta(days=29) < today else "active",
                ), admin["id"])
                await milestone_service.add_member(db, milestone["id"], supervisor["id"], "supervisor")
                crew = random.sample(workers, k=min(len(workers), random.randint(2, 5)))
                for worker in crew:
                    await milestone_service.add_member(db, milestone["id"], worker["id"], "worker")

                for t in range(tasks_per_milestone):
                    t_start = datetime.combine(m_start + timedelta(days=t * 3), datetime.min.time()).replace(hour=7)
                    task = await task_service.create_task(db, TaskCreate(
                        milestone_id=milestone["id"],
                        title=random.choice(TASK_TITLES),
                        status=random.choice(["todo", "in_progress", "done"]),
                        start_datetime=t_start,
                        end_datetime=t_start + timedelta(days=2, hours=10),
                        estimated_hours=random.choice([8, 16, 24]),
                        assignee_ids=[w["id"] for w in random.sample(crew, k=min(2, len(crew)))],
                    ), supervisor["id"])

                    for assignee in task["assignees"]:
                        work_date = t_start.date()
                        if work_date > today:
                            continue
                        record = await attendance_service.mark_daily_attendance(
                            db, assignee["id"], milestone["id"], work_date,
                            random.choice(["full_day", "full_day", "half_day", "absent"]), task["id"],
                        )
                        if random.random() > 0.2:
                            await attendance_service.approve_attendance(db, record["id"], supervisor["id"])

                await financial_service.record_expense(db, ExpenseCreate(
                    milestone_id=milestone["id"],
                    expense_category=random.choice(EXPENSE_CATEGORIES),
                    description="Site purchases",
                    amount=random.randint(5, 80) * 100,
                    expense_date=m_start,
                ), admin["id"])

                if milestone["status"] == "completed":
                    items = await invoice_service.suggest_invoice_items(db, milestone["id"])
                    if items:
                        invoice = await invoice_service.create_invoice(db, InvoiceCreate(
                            milestone_id=milestone["id"],
                            issue_date=m_start + timedelta(days=30),
                            tax_rate=5,
                            client_name="Demo Client LLC",
                            items=[InvoiceItemIn(**item) for item in items],
                        ), admin["id"])
                        await payment_service.record_payment(db, PaymentCreate(
                            invoice_id=invoice["id"],
                            payment_amount=round(invoice["total_amount"] * random.choice([0.5, 1.0]), 2),
                        ), admin["id"])

            logger.info("Project %d/%d seeded: %s", p + 1, num_projects, project["name"])

        await db.commit()

    elapsed = time.perf_counter() - start
    logger.info("Seeding complete in %.1fs (password for every account: %s)", elapsed, DEMO_PASSWORD)
    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Seed the SiteTrack database with demo data")
    parser.add_argument("--small", action="store_true", help="Use a small dataset")
    parser.add_argument("--reset", action="store_true", help="Drop all tables before seeding")
    args = parser.parse_args()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    asyncio.run(seed(small=args.small, reset=args.reset))


if __name__ == "__main__":
    main()
