"""
Create a user (e.g. the first admin). Run from project root:
  python -m userhub.scripts.create_user NAME EMAIL PASSWORD [role]
Example:
  python -m userhub.scripts.create_user "Ada Admin" admin@example.com your-secure-password admin
"""
import argparse
import logging
import sys

from userhub.core.config import get_settings
from userhub.core.database import SessionLocal
from userhub.core.security import PASSWORD_MAX_LEN, PASSWORD_MIN_LEN
from userhub.models.user import UserRole
from userhub.services import users as user_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a userhub user (bootstrap the first admin).")
    parser.add_argument("name", help="Display name (1-255 chars)")
    parser.add_argument("email", help="Login email (unique)")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument(
        "role",
        nargs="?",
        default=UserRole.USER.value,
        choices=[role.value for role in UserRole],
    )
    args = parser.parse_args(argv)

    name = args.name.strip()
    if not name or len(name) > 255:
        print("Invalid name length.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        if user_store.count(db) == 0 and args.role != UserRole.ADMIN.value:
            logger.warning("No users exist yet; consider creating an admin first.")
        user = user_store.create(
            db,
            {"name": name, "email": args.email.strip(), "password": args.password, "role": args.role},
            get_settings(),
        )
    except user_store.UserValidationError as e:
        print(f"Cannot create user: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()
    print(f"Created user '{user.email}' (id={user.id}) with role '{user.role}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
