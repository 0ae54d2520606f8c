"""Postgres-backed entitlement store for the content-access context."""

from __future__ import annotations

from typing import Any, List, Optional
import json
import os

try:  # pragma: no cover -- optional dependency in some environments
    import psycopg
    from psycopg import sql

    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    HAVE_PSYCOPG = False

from .domain import CONTENT_TABLES, ActivationResult, SectionEntitlement

_ALLOWED_TABLES = frozenset(CONTENT_TABLES.values())


def _dsn() -> str:
    """Resolve the Postgres DSN.

    Order of precedence (first non-empty wins):
      1) CONTENT_ACCESS_DATABASE_URL (context-specific override)
      2) DATABASE_URL (app-wide default)
    """
    for candidate in (os.getenv("CONTENT_ACCESS_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if candidate:
            return candidate
    raise RuntimeError("Database DSN unavailable for content-access repo")


class DBEntitlementRepo:
    """EntitlementStore over the Supabase Postgres schema.

    Expects `public.section_access`, `public.subject_sections`,
    `public.profiles`, the content tables (`videos`, `quizzes`, `files`) and
    the `public.activate_section_access(p_section_id, p_code)` function.
    Uses a service-role connection; every query is scoped by user id.
    """

    def __init__(self, dsn: Optional[str] = None, *, connect_timeout: int = 5) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBEntitlementRepo")
        self._dsn = dsn or _dsn()
        self._connect_timeout = connect_timeout

    def _connect(self) -> Any:
        return psycopg.connect(self._dsn, connect_timeout=self._connect_timeout)

    # ------------------------------------------------------------------
    def get_content_section_id(self, *, table: str, content_id: str) -> str | None:
        if table not in _ALLOWED_TABLES:
            raise LookupError(f"unknown content table: {table}")
        stmt = sql.SQL("select section_id::text from public.{} where id = %s limit 1").format(sql.Identifier(table))
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (content_id,))
                row = cur.fetchone()
        if not row or row[0] is None:
            return None
        return str(row[0])

    def has_section_access(self, *, user_id: str, section_id: str) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select exists(select 1 from public.section_access where user_id = %s and section_id = %s)",
                    (user_id, section_id),
                )
                row = cur.fetchone()
        return bool(row and row[0])

    def get_section_price(self, *, section_id: str) -> int | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select price_egp from public.subject_sections where id = %s", (section_id,))
                row = cur.fetchone()
        if not row or row[0] is None:
            return None
        return int(row[0])

    def get_user_role(self, *, user_id: str) -> str | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select role from public.profiles where id = %s", (user_id,))
                row = cur.fetchone()
        return str(row[0]) if row and row[0] is not None else None

    def list_section_access(self, *, user_id: str) -> List[SectionEntitlement]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select section_id::text, activated_at
                      from public.section_access
                     where user_id = %s
                     order by activated_at asc nulls first, section_id asc
                    """,
                    (user_id,),
                )
                rows = cur.fetchall()
        items: List[SectionEntitlement] = []
        for row in rows:
            ts = row[1]
            items.append(
                SectionEntitlement(
                    section_id=str(row[0]),
                    activated_at=ts.isoformat() if hasattr(ts, "isoformat") else (str(ts) if ts else None),
                )
            )
        return items

    def activate_section_access(self, *, user_id: str, section_id: str, code: str) -> ActivationResult:
        """Redeem an activation code through the database function.

        The function reads the caller via `auth.uid()`, so the request JWT
        claims are set for the duration of the transaction.
        """
        claims = json.dumps({"sub": user_id, "role": "authenticated"})
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('request.jwt.claims', %s, true)", (claims,))
                cur.execute("select set_config('request.jwt.claim.sub', %s, true)", (user_id,))
                cur.execute(
                    "select success, message from public.activate_section_access(%s, %s)",
                    (section_id, code),
                )
                row = cur.fetchone()
            conn.commit()
        if not row:
            return ActivationResult(False, "حدث خطأ أثناء التفعيل")
        return ActivationResult(bool(row[0]), str(row[1] or ""))


__all__ = ["DBEntitlementRepo"]
