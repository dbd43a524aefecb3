# edemy/scripts/make_instructor.py
"""Promueve una cuenta existente a instructor: python -m edemy.scripts.make_instructor <email>"""
import argparse
import logging

from edemy.config.database import close_connections
from edemy.core.errors import AppError
from edemy.services.user_service import UserService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Grant the instructor role to a user")
    parser.add_argument("email")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    try:
        user = UserService().make_instructor(args.email)
    except AppError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        close_connections()
    print(f"✅ {user['username']} <{user['email']}> is now an instructor")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
