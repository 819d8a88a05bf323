"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and allocations.

Pattern: Repository + Data Mapper. AccountStore and AllocationStore are the
repositories; _row_to_account / _row_to_allocation are the mappers. Route and
auth code never touches SQL directly.

Concurrency:
  SQLAlchemy Core is synchronous. Every public method is a coroutine that
  runs the blocking query in Starlette's thread pool, so a lookup suspends
  the calling request instead of stalling the event loop. No lock is held
  across an await; each call is one point operation on its own connection.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Passwords are hashed inside create() and never stored in plaintext.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool

from auth.models import ROLE_USER, Account, Allocation
from auth.passwords import hash_password

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(20), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=ROLE_USER),
    Column("created_at", String(32), nullable=False),
)

_allocations = Table(
    "allocations",
    _metadata,
    Column("account_id", Integer, primary_key=True),
    Column("stocks", Integer, nullable=False),
    Column("funds", Integer, nullable=False),
    Column("bonds", Integer, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build an engine for db_url and make sure the schema exists.

    Both stores share one engine so a single SQLite file (or shared-memory
    URI in tests) backs accounts and allocations.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def check_db_connected(engine: Engine) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore(create_db_engine("sqlite:///foliogate.db"))
        account = await store.create("bob", "Bob", "Lee", "secret", "")
        same = await store.find_by_username("bob")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def find_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive). None if not found."""
        return await run_in_threadpool(self._find_by_username, username)

    async def find_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. None if not found."""
        return await run_in_threadpool(self._find_by_id, account_id)

    async def create(
        self,
        username: str,
        first_name: str,
        last_name: str,
        password: str,
        email: str,
        role: str = ROLE_USER,
    ) -> Account:
        """Hash the password, insert the account and return it with its new id.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        Callers treat that as a duplicate-username outcome: two concurrent
        signups can both pass the existence check before either inserts.
        """
        return await run_in_threadpool(self._create, username, first_name, last_name, password, email, role)

    async def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by username."""
        return await run_in_threadpool(self._list_accounts)

    async def update_role(self, account_id: int, role: str) -> bool:
        """Change an account's role. Returns False if account_id was not found."""
        return await run_in_threadpool(self._update_role, account_id, role)

    # ------------------------------------------------------------------
    # Blocking implementations (run in the thread pool)
    # ------------------------------------------------------------------

    def _find_by_username(self, username: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def _find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def _create(
        self,
        username: str,
        first_name: str,
        last_name: str,
        password: str,
        email: str,
        role: str,
    ) -> Account:
        account = Account(
            username=username,
            first_name=first_name,
            last_name=last_name,
            hashed_password=hash_password(password),
            email=email or "",
            role=role,
            created_at=_now_iso(),
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    username=account.username,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    role=account.role,
                    created_at=account.created_at,
                )
            )
            conn.commit()
        account.id = result.inserted_primary_key[0]
        return account

    def _list_accounts(self) -> list[Account]:
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.username)).fetchall()
        return [_row_to_account(r) for r in rows]

    def _update_role(self, account_id: int, role: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(role=role))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


class AllocationStore:
    """Repository for per-account portfolio allocations."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def set_allocations(self, account_id: int, stocks: int, funds: int, bonds: int) -> None:
        """Insert or replace the allocation split for account_id."""
        await run_in_threadpool(self._set_allocations, account_id, stocks, funds, bonds)

    async def get(self, account_id: int) -> Allocation | None:
        return await run_in_threadpool(self._get, account_id)

    def _set_allocations(self, account_id: int, stocks: int, funds: int, bonds: int) -> None:
        values = {"account_id": account_id, "stocks": stocks, "funds": funds, "bonds": bonds}
        with self.engine.connect() as conn:
            updated = conn.execute(
                _allocations.update()
                .where(_allocations.c.account_id == account_id)
                .values(stocks=stocks, funds=funds, bonds=bonds)
            )
            if updated.rowcount == 0:
                conn.execute(_allocations.insert().values(**values))
            conn.commit()

    def _get(self, account_id: int) -> Allocation | None:
        with self.engine.connect() as conn:
            row = conn.execute(_allocations.select().where(_allocations.c.account_id == account_id)).fetchone()
        return _row_to_allocation(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email or "",
        hashed_password=row.hashed_password,
        role=row.role,
        created_at=row.created_at,
    )


def _row_to_allocation(row) -> Allocation:
    return Allocation(account_id=row.account_id, stocks=row.stocks, funds=row.funds, bonds=row.bonds)
