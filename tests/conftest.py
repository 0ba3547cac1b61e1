import copy
import re
from contextlib import contextmanager
from types import SimpleNamespace

import pytest
from psycopg.pq import TransactionStatus
from sqlalchemy import create_engine, event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from matviews.db import Base
from matviews.models.mat_views import MatViewDefinition, RefreshStrategy

QUALIFIED = re.compile(r'"((?:[^"]|"")*)"\."((?:[^"]|"")*)"')
QUOTED = re.compile(r'"((?:[^"]|"")*)"')


class FakePgError(Exception):
    """Stand-in for a psycopg error carrying a SQLSTATE."""

    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


class FakeResult:
    def __init__(self, value):
        self.value = value

    def scalar(self):
        return self.value


class FakeCatalog:
    """In-memory pg_matviews / pg_index state shared by fake connections."""

    def __init__(self):
        self.search_path = '"$user", public'
        self.current_user = "app"
        self.schemas = {"public"}
        self.views = set()
        self.unique = set()
        self.indexes = {}
        self.estimates = {}
        self.counts = {}

    def snapshot(self):
        return copy.deepcopy((self.views, self.unique, self.indexes))

    def restore(self, state):
        self.views, self.unique, self.indexes = state


class FakeConnection:
    """
    Records every statement and applies DDL effects to a FakeCatalog.

    ``failures`` maps a SQL fragment to the exception raised when a
    statement containing it is executed.
    """

    def __init__(self, catalog=None, idle=False, autocommit=False):
        self.catalog = catalog or FakeCatalog()
        self.executed = []
        self.queries = []
        self.failures = {}
        self.options = []
        self.events = []
        status = TransactionStatus.IDLE if idle else TransactionStatus.INTRANS
        self.connection = SimpleNamespace(
            dbapi_connection=SimpleNamespace(info=SimpleNamespace(transaction_status=status), autocommit=autocommit)
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.events.append("close")
        return False

    def execution_options(self, **options):
        self.options.append(options)
        return self

    def commit(self):
        self.events.append("commit")

    @contextmanager
    def _transaction(self, kind):
        self.events.append(kind)
        state = self.catalog.snapshot()
        try:
            yield
        except Exception:
            self.catalog.restore(state)
            self.events.append("rollback")
            raise
        self.events.append(f"end {kind}")

    def begin(self):
        return self._transaction("begin")

    def begin_nested(self):
        return self._transaction("savepoint")

    def execute(self, clause, params=None):
        sql = str(clause)
        params = params or {}
        self.queries.append((sql, params))
        cat = self.catalog
        if "current_setting('search_path')" in sql:
            return FakeResult(cat.search_path)
        if "current_user" in sql:
            return FakeResult(cat.current_user)
        if "to_regnamespace" in sql:
            return FakeResult(params["name"] in cat.schemas)
        if "pg_matviews" in sql:
            return FakeResult(int((params["schema"], params["rel"]) in cat.views))
        if "indisunique" in sql:
            return FakeResult(int((params["schema"], params["rel"]) in cat.unique))
        if "pg_indexes" in sql:
            return FakeResult(int(params["index_name"] in cat.indexes))
        if "reltuples" in sql:
            return FakeResult(cat.estimates.get(params["rel"], 0))
        raise AssertionError(f"unexpected query: {sql}")

    def exec_driver_sql(self, sql, parameters=None, execution_options=None):
        self.executed.append(sql)
        for fragment, exc in self.failures.items():
            if fragment in sql:
                raise exc
        return FakeResult(self._apply(sql))

    def _apply(self, sql):
        cat = self.catalog
        target = QUALIFIED.search(sql)
        key = (target.group(1), target.group(2)) if target else None
        if sql.startswith("SELECT COUNT(*)"):
            return cat.counts.get(key[1], 0)
        if sql.startswith("CREATE MATERIALIZED VIEW"):
            cat.views.add(key)
        elif sql.startswith("DROP MATERIALIZED VIEW"):
            cat.views.discard(key)
            cat.unique.discard(key)
            cat.indexes = {name: rel for name, rel in cat.indexes.items() if rel != key}
        elif sql.startswith("ALTER MATERIALIZED VIEW"):
            new_name = QUOTED.findall(sql)[-1]
            cat.views.discard(key)
            cat.views.add((key[0], new_name))
            if key in cat.unique:
                cat.unique.discard(key)
                cat.unique.add((key[0], new_name))
            cat.indexes = {
                name: ((key[0], new_name) if rel == key else rel) for name, rel in cat.indexes.items()
            }
        elif sql.startswith("CREATE UNIQUE INDEX"):
            index_name = QUOTED.search(sql).group(1)
            cat.unique.add(key)
            cat.indexes[index_name] = key
        return None


class FakeEngine:
    """Hands out a single FakeConnection from ``connect()``."""

    def __init__(self, conn):
        self.conn = conn

    def connect(self):
        return self.conn


def make_definition(name="mv_x", sql="SELECT 1 AS id", strategy="regular", columns=None):
    return SimpleNamespace(
        name=name,
        sql=sql,
        refresh_strategy=strategy,
        unique_index_columns=list(columns or []),
        dependencies=[],
    )


def db_error(sqlstate, message="error"):
    return DBAPIError("statement", None, FakePgError(message, sqlstate))


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def owned_conn(catalog):
    """Connection as opened from an Engine: idle, autocommit."""
    return FakeConnection(catalog, idle=True, autocommit=True)


@pytest.fixture
def engine_bind(owned_conn):
    return FakeEngine(owned_conn)


@pytest.fixture
def borrowed_conn(catalog):
    """Connection handed in by a caller that already has a transaction open."""
    return FakeConnection(catalog, idle=False, autocommit=False)


@pytest.fixture
def definition_factory():
    return make_definition


@pytest.fixture
def pg_error():
    return db_error


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def stored_definition(db_session):
    definition = MatViewDefinition(
        name="mv_users",
        sql="SELECT id, email FROM users",
        refresh_strategy=RefreshStrategy.REGULAR,
        unique_index_columns=["id"],
    )
    db_session.add(definition)
    db_session.commit()
    return definition
