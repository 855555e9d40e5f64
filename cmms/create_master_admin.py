from __future__ import annotations

import argparse
import getpass

from sqlalchemy import select

from cmms.db import SessionLocal
from cmms.models import User, UserRole
from cmms.security.passwords import hash_password, validate_new_password
from cmms.services.parsing import is_valid_email, normalize_email


def create_master_admin(*, email: str, password: str, name: str | None = None) -> tuple[User, bool]:
    clean_email = normalize_email(email)
    if not is_valid_email(clean_email):
        raise ValueError('A valid email is required.')
    validate_new_password(password)

    with SessionLocal() as db:
        user = db.execute(select(User).where(User.email == clean_email)).scalar_one_or_none()
        created = user is None
        if created:
            user = User(email=clean_email, role=UserRole.MASTER_ADMIN, store_id=None, active=True)
            db.add(user)
        else:
            user.role = UserRole.MASTER_ADMIN
            user.store_id = None
            user.active = True
        user.password_hash = hash_password(password)
        if name:
            user.name = name.strip()
        db.commit()
        return user, created


def main() -> None:
    parser = argparse.ArgumentParser(description='Create or promote a master admin login.')
    parser.add_argument('email', help='Login email for the master admin.')
    parser.add_argument('--name', default=None, help='Display name.')
    parser.add_argument(
        '--password',
        default=None,
        help='Password to set. Prompted for when omitted.',
    )
    args = parser.parse_args()

    password = args.password or getpass.getpass('Password: ')
    try:
        user, created = create_master_admin(email=args.email, password=password, name=args.name)
    except ValueError as exc:
        parser.error(str(exc))
    action = 'created' if created else 'updated'
    print(f'Master admin {action}: {user.email}')


if __name__ == '__main__':
    main()
