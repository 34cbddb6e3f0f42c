from __future__ import annotations

import os
from getpass import getpass

from vault import create_app
from vault.common.audit import Actor, AuditEntry
from vault.extensions import db
from vault.models import AuditAction, User
from vault.services import get_services


def main() -> None:
    app = create_app()

    with app.app_context():
        db.create_all()

        username = os.getenv("ADMIN_USERNAME", "admin")
        full_name = os.getenv("ADMIN_FULL_NAME", "Administrator")
        password = os.getenv("ADMIN_PASSWORD")
        if not password:
            password = getpass("Admin password: ")

        user = User.query.filter_by(username=username).one_or_none()
        created = False
        if user is None:
            user = User(username=username, full_name=full_name, is_active=True)
            created = True

        user.set_password(password)
        user.is_admin = True
        user.failed_login_attempts = 0
        user.locked_until = None

        db.session.add(user)
        db.session.flush()
        get_services().audit.append(
            AuditEntry(
                action=AuditAction.USER_CREATED if created else AuditAction.USER_UPDATED,
                actor=Actor.system(),
                resource_type="user",
                resource_id=user.id,
                details=f"Admin account {'created' if created else 'updated'}: {username}",
            )
        )
        db.session.commit()

        print(f"{'Created' if created else 'Updated'} admin user: {username}")


if __name__ == "__main__":
    main()
