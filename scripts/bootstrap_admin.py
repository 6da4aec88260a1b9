#!/usr/bin/env python3
"""Emit SQL that grants a directory role to an existing Supabase account."""

from __future__ import annotations

import argparse

ROLES = ("user", "moderator", "admin")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role {role!r}")

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    elif email:
        target_where = f"lower(email) = lower({_quote_sql(email)})"
    else:
        raise ValueError("either user_id or email is required")

    return f"""-- Model directory role bootstrap
-- Run in the Supabase SQL editor or another session that can write auth.users.

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {_quote_sql(role)})
where {target_where};

insert into users (id, email, first_name, last_name)
select
  id,
  email,
  nullif(raw_user_meta_data ->> 'first_name', ''),
  nullif(raw_user_meta_data ->> 'last_name', '')
from auth.users
where {target_where}
on conflict (id) do update
set email = excluded.email, updated_at = now();
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to grant a model directory role.")
    parser.add_argument(
        "--role",
        choices=ROLES,
        default="admin",
        help="Role stored in auth.users.raw_app_meta_data.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    args = parser.parse_args()

    print(render_sql(role=args.role, user_id=args.user_id, email=args.email))


if __name__ == "__main__":
    main()
