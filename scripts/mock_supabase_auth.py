#!/usr/bin/env python3
"""Local stand-in for Supabase ``GET /auth/v1/user``.

Point ``MD_SUPABASE_URL`` at this server and send one of the fixture tokens
(``admin-token``, ``moderator-token``, ``user-token``, ``second-user-token``)
as the bearer token. ``--users-file`` adds or replaces tokens from a JSON
object mapping token to user payload.
"""

from __future__ import annotations

import argparse
import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

FIXTURE_USERS: dict[str, dict[str, Any]] = {
    "admin-token": {
        "id": "11111111-1111-1111-1111-111111111111",
        "email": "admin@example.com",
        "app_metadata": {"role": "admin"},
        "user_metadata": {"first_name": "Site", "last_name": "Admin"},
    },
    "moderator-token": {
        "id": "22222222-2222-2222-2222-222222222222",
        "email": "moderator@example.com",
        "app_metadata": {"role": "moderator"},
        "user_metadata": {"first_name": "Review", "last_name": "Desk"},
    },
    "user-token": {
        "id": "33333333-3333-3333-3333-333333333333",
        "email": "ada@example.com",
        "app_metadata": {"role": "user"},
        "user_metadata": {"first_name": "Ada", "last_name": "Lovelace"},
    },
    "second-user-token": {
        "id": "44444444-4444-4444-4444-444444444444",
        "email": "grace@example.com",
        "app_metadata": {},
        "user_metadata": {"first_name": "Grace"},
    },
}


def load_users(users_file: str | None) -> dict[str, dict[str, Any]]:
    users = {token: dict(payload) for token, payload in FIXTURE_USERS.items()}
    if not users_file:
        return users

    extra = json.loads(Path(users_file).read_text(encoding="utf-8"))
    if not isinstance(extra, dict):
        raise ValueError("users file must contain a JSON object keyed by token")
    for token, payload in extra.items():
        if not isinstance(payload, dict) or not isinstance(payload.get("id"), str):
            raise ValueError(f"user payload for token {token!r} needs a string id")
        users[token] = payload
    return users


def make_handler(users: dict[str, dict[str, Any]]) -> type[BaseHTTPRequestHandler]:
    class MockSupabaseHandler(BaseHTTPRequestHandler):
        server_version = "MockSupabase/1.0"

        def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
            if self.path == "/healthz":
                self._write_json(HTTPStatus.OK, {"status": "ok"})
                return

            if self.path != "/auth/v1/user":
                self._write_json(HTTPStatus.NOT_FOUND, {"detail": "not found"})
                return

            if not self.headers.get("apikey"):
                self._write_json(HTTPStatus.BAD_REQUEST, {"detail": "missing apikey header"})
                return

            authorization = self.headers.get("Authorization", "")
            if not authorization.lower().startswith("bearer "):
                self._write_json(HTTPStatus.UNAUTHORIZED, {"detail": "missing bearer token"})
                return

            user = users.get(authorization.split(" ", maxsplit=1)[1].strip())
            if user is None:
                self._write_json(HTTPStatus.UNAUTHORIZED, {"detail": "invalid token"})
                return

            self._write_json(HTTPStatus.OK, user)

        def log_message(self, _: str, *args: object) -> None:
            if args:
                print("mock-supabase:", *args)

        def _write_json(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
            raw = json.dumps(payload).encode("utf-8")
            self.send_response(status.value)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

    return MockSupabaseHandler


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock Supabase auth /auth/v1/user endpoint.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54321)
    parser.add_argument("--users-file", help="JSON object mapping bearer token to user payload")
    args = parser.parse_args()

    users = load_users(args.users_file)
    server = ThreadingHTTPServer((args.host, args.port), make_handler(users))
    print(f"mock-supabase listening on http://{args.host}:{args.port} tokens={sorted(users)}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
