#!/usr/bin/env python3
"""
Portal -- administration CLI.

Identities are never created over HTTP; this CLI is how accounts get into
the credential store.

Usage:
  python main.py create-user --email admin@example.com --password 's3cret!' --role admin
  python main.py seed-demo

Environment variables:
  DATABASE_URL  SQLAlchemy URL shared by every store (default: sqlite file next to the package).
  SECRET_KEY    Required unless DEBUG=true (see core/config.py).
"""

import argparse
import logging
import sys

from sqlalchemy.exc import IntegrityError

from audit.context import AuditContext
from audit.ledger import AuditLedger
from audit.models import AuditAction
from auth.models import ROLE_ADMIN, ROLE_USER, ROLES, User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password, password_too_long
from tracker.models import Project, Task
from tracker.store import TrackerStore

logger = logging.getLogger("portal.cli")

_MIN_PASSWORD = 6

# (email, password, role)
_DEMO_USERS = [
    ("admin@portal.com", "admin123", ROLE_ADMIN),
    ("user@portal.com", "user123", ROLE_USER),
    ("user2@portal.com", "user456", ROLE_USER),
]

# owner email -> [(project name, description, [(task title, task description, status)])]
_DEMO_PROJECTS = {
    "user@portal.com": [
        (
            "E-commerce Platform",
            "Building a modern e-commerce solution",
            [
                ("Setup Database Schema", "Design and implement the database schema", "done"),
                ("Implement User Authentication", "Login and logout with session tokens", "in_progress"),
                ("Build Product Catalog", "Product listing and detail pages", "new"),
                ("Payment Integration", "Integrate a payment gateway", "new"),
            ],
        ),
        (
            "Mobile App Development",
            "Creating a cross-platform mobile app",
            [
                ("Mobile UI Design", "Design the user interface for mobile screens", "in_progress"),
                ("Push Notifications", "Implement the push notification system", "new"),
            ],
        ),
    ],
    "user2@portal.com": [
        (
            "Data Analytics Dashboard",
            "Analytics dashboard for business insights",
            [
                ("Data Collection Setup", "Configure data collection from various sources", "done"),
                ("Chart Components", "Reusable chart components", "in_progress"),
                ("User Dashboard", "User-specific analytics dashboard", "new"),
            ],
        ),
    ],
}


def create_user(email: str, password: str, role: str) -> int:
    """Create one identity. Returns a process exit code."""
    if len(password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return 1
    if password_too_long(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1
    store = UserStore()
    try:
        user_id = store.create_user(User(email=email, password_hash=hash_password(password), role=role))
    except IntegrityError:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1
    finally:
        store.close()
    logger.info("Created user id=%s email=%s role=%s", user_id, email, role)
    print(f"  Created {role} '{email}' (id {user_id}).")
    return 0


def seed_demo() -> int:
    """Populate an empty database with demo accounts, projects and tasks."""
    users = UserStore()
    tracker = TrackerStore()
    ledger = AuditLedger()
    try:
        if users.has_users():
            print("  [!] Database already has users; seed-demo only runs against an empty database.")
            return 1

        ids: dict[str, int] = {}
        for email, password, role in _DEMO_USERS:
            ids[email] = users.create_user(User(email=email, password_hash=hash_password(password), role=role))

        project_count = task_count = 0
        for owner_email, projects in _DEMO_PROJECTS.items():
            for name, description, tasks in projects:
                project_id = tracker.create_project(
                    Project(name=name, description=description, owner_id=ids[owner_email])
                )
                project_count += 1
                for title, task_description, status in tasks:
                    tracker.create_task(
                        Task(project_id=project_id, title=title, description=task_description, status=status)
                    )
                    task_count += 1

        # One creation event per demo project, attributed to its owner.
        for project in tracker.list_projects():
            AuditContext(ledger, project.owner_id, ip="127.0.0.1", user_agent="portal-cli").record(
                AuditAction.PROJECT_CREATE, "project", project.id, details={"name": project.name, "seeded": True}
            )
    finally:
        ledger.close()
        tracker.close()
        users.close()

    print("\nPortal demo data")
    print("-" * 40)
    for email, password, role in _DEMO_USERS:
        print(f"  {role:<6} {email:<20} password: {password}")
    print(f"\n  {project_count} projects, {task_count} tasks created.\n")
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")

    parser = argparse.ArgumentParser(
        prog="portal",
        description="Administration commands for the Portal project tracker.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email admin@example.com --password 'changeme' --role admin
  python main.py create-user --email dev@example.com --password 'changeme'
  DEBUG=true python main.py seed-demo
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-user", help="Create a user account")
    create.add_argument("--email", required=True, help="Login email (stored lower-case)")
    create.add_argument("--password", required=True, help=f"Password, at least {_MIN_PASSWORD} characters")
    create.add_argument(
        "--role",
        choices=sorted(ROLES),
        default=ROLE_USER,
        help="Account role (default: user)",
    )

    subparsers.add_parser("seed-demo", help="Create demo accounts, projects and tasks in an empty database")

    args = parser.parse_args()

    if args.command == "create-user":
        sys.exit(create_user(args.email, args.password, args.role))
    sys.exit(seed_demo())


if __name__ == "__main__":
    main()
