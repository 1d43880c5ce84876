"""CLI utility to inspect members stored in the forum database.

The script builds the application with :func:`forum.create_app` so it reads
the same SQLAlchemy configuration (see :mod:`config`) as the web server. It
mirrors the fields moderators care about: whether a member can sign in
(``active``), whether they are blocked (``is_block``) and whether the
``ADMINS`` setting grants them moderation rights.
"""

from __future__ import annotations

import argparse
from typing import Iterable, List, TypedDict

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError

from forum.models import User, db


class UserRecord(TypedDict):
    """Serializable view of a member for CLI output."""

    loginname: str
    email: str
    is_admin: bool
    is_block: bool
    active: bool


def _build_query(include_inactive: bool, blocked_only: bool) -> Select[tuple[User]]:
    """Compose the SQL query for retrieving members.

    Args:
        include_inactive: When ``True`` deactivated accounts are returned too.
        blocked_only: When ``True`` restricts results to blocked members.

    Returns:
        SQLAlchemy ``Select`` statement ordered by login name.
    """

    query = select(User)

    if not include_inactive:
        query = query.where(User.active.is_(True))

    if blocked_only:
        query = query.where(User.is_block.is_(True))

    return query.order_by(User.loginname)


def _serialize(rows: Iterable[User]) -> List[UserRecord]:
    serialized: List[UserRecord] = []
    for row in rows:
        serialized.append(
            {
                "loginname": row.loginname,
                "email": row.email,
                "is_admin": row.is_admin,
                "is_block": bool(row.is_block),
                "active": bool(row.active),
            }
        )
    return serialized


def list_users(
    include_inactive: bool = False, blocked_only: bool = False
) -> List[UserRecord]:
    """Fetch members from the database bound to the current app context.

    Raises:
        SQLAlchemyError: Propagated if querying the database fails so the CLI
            can report actionable diagnostics.
    """

    query = _build_query(include_inactive=include_inactive, blocked_only=blocked_only)
    results = db.session.scalars(query).all()
    return _serialize(results)


def _print_records(records: List[UserRecord]) -> None:
    """Pretty-print member records to stdout."""

    if not records:
        print("No users matched the filters.")
        return

    print("loginname, email, is_admin, is_block, active")
    for record in records:
        print(
            f"{record['loginname']}, {record['email']}, {record['is_admin']}, "
            f"{record['is_block']}, {record['active']}"
        )


def main(argv: List[str] | None = None) -> int:
    """Entry point for the member listing CLI."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--include-inactive",
        action="store_true",
        help="Return deactivated accounts as well (defaults to active only).",
    )
    parser.add_argument(
        "--blocked-only",
        action="store_true",
        help="Restrict output to blocked members.",
    )
    args = parser.parse_args(argv)

    from forum import create_app

    app = create_app()
    try:
        with app.app_context():
            records = list_users(
                include_inactive=args.include_inactive, blocked_only=args.blocked_only
            )
    except SQLAlchemyError as exc:  # pragma: no cover - surfaced to operators
        print("Failed to fetch users. Confirm your database credentials and URL.")
        print(exc)
        return 1

    _print_records(records)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
