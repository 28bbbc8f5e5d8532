#!/usr/bin/env python3
"""
Create an admin account, or promote an existing user to admin.

Usage: python scripts/create_admin.py EMAIL [FULL_NAME] [PASSWORD]
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging

from database import SessionLocal, create_schema, init_engine, shutdown
from models.User import Role, User
from services import auth_service
from utils.errors import AppError
from utils.logging_config import setup_logging


def create_admin(email: str, full_name: str = "Administrator", password: str = None) -> int:
    session = SessionLocal()
    try:
        email = auth_service.validate_email(email)
        user = session.query(User).filter(User.email == email).first()
        if user is not None:
            user.role = Role.admin
            session.commit()
            print(f"✅ Promoted {email} to admin")
            return 0

        if not password:
            print("❌ A password is required to create a new account")
            return 1
        user = User(
            full_name=auth_service.validate_full_name(full_name),
            email=email,
            password_hash=auth_service.hash_password(auth_service.validate_password(password)),
            role=Role.admin,
        )
        session.add(user)
        session.commit()
        print(f"✅ Created admin {email} (id={user.id})")
        return 0
    except AppError as e:
        session.rollback()
        print(f"❌ {e.message}")
        return 1
    finally:
        session.close()


if __name__ == "__main__":
    setup_logging()
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    init_engine()
    create_schema()
    args = sys.argv[1:]
    code = create_admin(args[0], *(args[1:3]))
    shutdown()
    logging.info("admin.create_script exit=%s", code)
    sys.exit(code)
