from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from app.core.config import get_settings
from app.services.query import ListingFilter, ListingOrder

if TYPE_CHECKING:
    from app.services.store import InMemoryListingStore


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryDuplicateError(RepositoryError):
    """Raised when a write violates a uniqueness constraint."""

    def __init__(self, constraint: str | None) -> None:
        self.constraint = constraint
        super().__init__(f"unique constraint violated: {constraint or 'unknown'}")


SLUG_CONSTRAINT = "listings_slug_key"

LISTING_WRITE_COLUMNS = (
    "slug",
    "name",
    "short_description",
    "long_description",
    "category",
    "tags",
    "provider",
    "pricing",
    "capabilities",
    "is_api_available",
    "is_open_source",
    "model_type",
    "external_url",
    "best_for",
    "features",
    "example_prompts",
    "status",
    "rejection_reason",
)

LISTING_ORDER_SQL: dict[str, str] = {
    "featured": "l.featured desc, l.trending_score desc, l.created_at desc, l.seq asc",
    "newest": "l.created_at desc, l.seq asc",
}

LISTING_SELECT_SQL = """
    select
      l.id::text as id,
      l.slug,
      l.name,
      l.short_description,
      l.long_description,
      l.category,
      l.tags,
      l.provider,
      l.pricing,
      l.capabilities,
      l.is_api_available,
      l.is_open_source,
      l.model_type,
      l.external_url,
      l.best_for,
      l.features,
      l.example_prompts,
      l.rating,
      l.reviews_count,
      l.installs_count,
      l.trending_score,
      l.featured,
      l.status::text as status,
      l.rejection_reason,
      l.uploaded_by::text as uploaded_by,
      l.created_at,
      l.updated_at,
      u.email as owner_email,
      u.first_name as owner_first_name,
      u.last_name as owner_last_name
    from listings l
    left join users u on u.id = l.uploaded_by
"""

_UNAVAILABLE_ERRORS = (
    OSError,
    pg_exc.PostgresConnectionError,
    pg_exc.CannotConnectNowError,
    pg_exc.TooManyConnectionsError,
)


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        async with self._connection() as conn:
            await conn.fetchval("select 1")

    async def slug_exists(self, slug: str, exclude_id: str | None = None) -> bool:
        async with self._connection() as conn:
            found = await conn.fetchval(
                """
                select 1
                from listings
                where slug = $1
                  and ($2::uuid is null or id <> $2::uuid)
                limit 1
                """,
                slug,
                exclude_id,
            )
        return found is not None

    async def owner_has_listing_named(self, *, owner_id: str, name: str) -> bool:
        async with self._connection() as conn:
            found = await conn.fetchval(
                """
                select 1
                from listings
                where uploaded_by = $1::uuid
                  and name = $2
                limit 1
                """,
                owner_id,
                name,
            )
        return found is not None

    async def upsert_owner(
        self,
        *,
        owner_id: str,
        email: str | None,
        first_name: str | None,
        last_name: str | None,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                insert into users (id, email, first_name, last_name)
                values ($1::uuid, $2, $3, $4)
                on conflict (id) do update
                set
                  email = coalesce(excluded.email, users.email),
                  first_name = coalesce(excluded.first_name, users.first_name),
                  last_name = coalesce(excluded.last_name, users.last_name),
                  updated_at = now()
                """,
                owner_id,
                email,
                first_name,
                last_name,
            )

    async def insert_listing(self, *, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        params: list[Any] = []
        bind = self._binder(params)
        values_sql = [self._cast(column, bind(fields.get(column))) for column in LISTING_WRITE_COLUMNS]
        owner_token = bind(owner_id)

        async with self._connection() as conn:
            async with conn.transaction():
                listing_id = await conn.fetchval(
                    f"""
                    insert into listings ({", ".join(LISTING_WRITE_COLUMNS)}, uploaded_by)
                    values ({", ".join(values_sql)}, {owner_token}::uuid)
                    returning id::text
                    """,
                    *params,
                )
                row = await self._fetch_listing_row(conn=conn, listing_id=listing_id)
        if not row:
            raise RepositoryNotFoundError("listing not found")
        return self._listing_row_to_dict(row)

    async def get_listing(self, *, listing_id: str, status: str | None = None) -> dict[str, Any]:
        try:
            async with self._connection() as conn:
                row = await self._fetch_listing_row(conn=conn, listing_id=listing_id, status=status)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("listing not found") from exc
        if not row:
            raise RepositoryNotFoundError("listing not found")
        return self._listing_row_to_dict(row)

    async def update_listing(self, *, listing_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - set(LISTING_WRITE_COLUMNS)
        if unknown:
            raise ValueError(f"unsupported listing columns: {sorted(unknown)}")

        params: list[Any] = []
        bind = self._binder(params)
        id_token = bind(listing_id)
        assignments = [f"{column} = {self._cast(column, bind(value))}" for column, value in fields.items()]
        assignments.append("updated_at = now()")

        async with self._connection() as conn:
            async with conn.transaction():
                updated_id = await conn.fetchval(
                    f"""
                    update listings
                    set {", ".join(assignments)}
                    where id = {id_token}::uuid
                    returning id::text
                    """,
                    *params,
                )
                if updated_id is None:
                    raise RepositoryNotFoundError("listing not found")
                row = await self._fetch_listing_row(conn=conn, listing_id=updated_id)
        if not row:
            raise RepositoryNotFoundError("listing not found")
        return self._listing_row_to_dict(row)

    async def delete_listing(self, *, listing_id: str) -> None:
        async with self._connection() as conn:
            deleted = await conn.fetchval(
                "delete from listings where id = $1::uuid returning id",
                listing_id,
            )
        if deleted is None:
            raise RepositoryNotFoundError("listing not found")

    async def list_listings(
        self,
        *,
        listing_filter: ListingFilter,
        order: ListingOrder,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        params: list[Any] = []
        bind = self._binder(params)
        where_sql = self._build_listing_conditions(listing_filter, bind)
        order_by_sql = LISTING_ORDER_SQL.get(order, LISTING_ORDER_SQL["newest"])
        filter_params = list(params)
        limit_token = bind(limit)
        offset_token = bind(offset)

        async with self._connection() as conn:
            total = await conn.fetchval(
                f"select count(*) from listings l where {where_sql}",
                *filter_params,
            )
            rows = await conn.fetch(
                f"""
                {LISTING_SELECT_SQL}
                where {where_sql}
                order by {order_by_sql}
                limit {limit_token}
                offset {offset_token}
                """,
                *params,
            )
        return [self._listing_row_to_dict(row) for row in rows], int(total or 0)

    async def list_owner_listings(self, *, owner_id: str) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                {LISTING_SELECT_SQL}
                where l.uploaded_by = $1::uuid
                order by {LISTING_ORDER_SQL["newest"]}
                """,
                owner_id,
            )
        return [self._listing_row_to_dict(row) for row in rows]

    async def record_review_event(
        self,
        *,
        listing_id: str,
        event_type: str,
        from_status: str,
        to_status: str,
        reason: str | None,
        actor_id: str | None,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                insert into listing_review_events (
                  listing_id,
                  event_type,
                  from_status,
                  to_status,
                  reason,
                  actor_id
                )
                values ($1::uuid, $2, $3::listing_status, $4::listing_status, $5, $6::uuid)
                """,
                listing_id,
                event_type,
                from_status,
                to_status,
                reason,
                actor_id,
            )

    async def list_review_events(self, *, listing_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                select
                  id,
                  listing_id::text as listing_id,
                  event_type,
                  from_status::text as from_status,
                  to_status::text as to_status,
                  reason,
                  actor_id::text as actor_id,
                  created_at
                from listing_review_events
                where listing_id = $1::uuid
                order by id asc
                limit $2
                offset $3
                """,
                listing_id,
                limit,
                offset,
            )
        return [dict(row) for row in rows]

    @staticmethod
    def _binder(params: list[Any]) -> Callable[[Any], str]:
        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        return bind

    @staticmethod
    def _cast(column: str, token: str) -> str:
        if column == "status":
            return f"{token}::listing_status"
        return token

    @staticmethod
    def _escape_like(value: str) -> str:
        return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    def _build_listing_conditions(self, listing_filter: ListingFilter, bind: Callable[[Any], str]) -> str:
        conditions: list[str] = []
        if listing_filter.status:
            conditions.append(f"l.status = {bind(listing_filter.status)}::listing_status")
        if listing_filter.category:
            conditions.append(f"l.category = {bind(listing_filter.category)}")
        if listing_filter.pricing:
            conditions.append(f"l.pricing = {bind(listing_filter.pricing)}")
        if listing_filter.search:
            token = bind(f"%{self._escape_like(listing_filter.search)}%")
            conditions.append(
                f"(l.name ilike {token} escape '\\' "
                f"or l.short_description ilike {token} escape '\\' "
                f"or exists (select 1 from unnest(l.tags) as listing_tag(tag) where listing_tag.tag ilike {token} escape '\\'))"
            )
        return " and ".join(conditions) if conditions else "true"

    @staticmethod
    async def _fetch_listing_row(
        *,
        conn: asyncpg.Connection,
        listing_id: str,
        status: str | None = None,
    ) -> asyncpg.Record | None:
        return await conn.fetchrow(
            f"""
            {LISTING_SELECT_SQL}
            where l.id = $1::uuid
              and ($2::listing_status is null or l.status = $2::listing_status)
            """,
            listing_id,
            status,
        )

    @staticmethod
    def _listing_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "slug": row["slug"],
            "name": row["name"],
            "short_description": row["short_description"],
            "long_description": row["long_description"],
            "category": row["category"],
            "tags": list(row["tags"] or []),
            "provider": row["provider"],
            "pricing": row["pricing"],
            "capabilities": list(row["capabilities"] or []),
            "is_api_available": bool(row["is_api_available"]),
            "is_open_source": bool(row["is_open_source"]),
            "model_type": row["model_type"],
            "external_url": row["external_url"],
            "best_for": list(row["best_for"] or []),
            "features": list(row["features"] or []),
            "example_prompts": list(row["example_prompts"] or []),
            "rating": float(row["rating"]),
            "reviews_count": int(row["reviews_count"]),
            "installs_count": int(row["installs_count"]),
            "trending_score": float(row["trending_score"]),
            "featured": bool(row["featured"]),
            "status": row["status"],
            "rejection_reason": row["rejection_reason"],
            "uploaded_by": row["uploaded_by"],
            "owner": {
                "id": row["uploaded_by"],
                "email": row["owner_email"],
                "first_name": row["owner_first_name"],
                "last_name": row["owner_last_name"],
            },
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryDuplicateError(exc.constraint_name) from exc
        except _UNAVAILABLE_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("MD_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc


@lru_cache
def get_repository() -> PostgresRepository | InMemoryListingStore:
    settings = get_settings()
    if settings.storage_backend == "memory":
        from app.services.store import InMemoryListingStore

        return InMemoryListingStore()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
