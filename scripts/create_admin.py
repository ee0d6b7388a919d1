"""
Create an admin account directly in the database.

Use this to bootstrap deployments that run with ALLOW_ADMIN_SIGNUP=false.

Usage:
    python scripts/create_admin.py --name "Ops" --email ops@example.com --password '...'
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reporthub.db import Base, SessionLocal, engine
from reporthub.errors import ConflictError
from reporthub.models import models  # noqa: F401
from reporthub.services.identity import create_admin


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create a Report Hub admin account")
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    if len(args.password) < 6:
        print("ERROR: password must be at least 6 characters")
        return 2

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        admin = create_admin(db, args.name, args.email, args.password)
        print(f"Created admin {admin.email} ({admin.id})")
        return 0
    except ConflictError as e:
        print(f"ERROR: {e.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
