import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from fastapi import Depends
from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from models import TENANT_TABLES
from tenancy import TenantNamespace, get_tenant, known_namespaces

logger = logging.getLogger("bedwise.database")

DB_FILE = Path(os.getenv("BEDWISE_DB_FILE", str(Path(__file__).resolve().parent / "bedwise.db")))
DATABASE_URL = os.getenv("BEDWISE_DATABASE_URL", f"sqlite:///{DB_FILE}")
TENANT_DIR = Path(os.getenv("BEDWISE_TENANT_DIR", str(DB_FILE.parent)))
READ_ONLY_OPTION = "bedwise_read_only"


REQUIRED_COLUMNS = {
    "departments": {"id", "department_code", "name", "status", "total_bed_capacity"},
    "beds": {
        "id",
        "bed_number",
        "department_id",
        "bed_type",
        "features_json",
        "status",
        "is_active",
        "last_cleaned_at",
    },
    "bed_assignments": {
        "id",
        "bed_id",
        "patient_id",
        "admission_date",
        "expected_discharge_date",
        "patient_condition",
        "discharge_date",
        "status",
    },
    "bed_transfers": {
        "id",
        "patient_id",
        "from_bed_id",
        "to_bed_id",
        "scheduled_time",
        "status",
        "completion_date",
    },
    "patient_discharges": {
        "id",
        "bed_id",
        "patient_id",
        "assignment_id",
        "discharge_type",
        "follow_up_required",
        "medications_json",
    },
    "bed_reservations": {"id", "bed_id", "patient_id", "transfer_id", "reserved_until", "status"},
}


class TenantBindingError(RuntimeError):
    pass


def _attach_sqlite_tenants(dbapi_connection, tenant_dir: Optional[Path]):
    cursor = dbapi_connection.cursor()
    try:
        for namespace in known_namespaces():
            target = ":memory:" if tenant_dir is None else str(tenant_dir / f"{namespace.schema}.db")
            cursor.execute("ATTACH DATABASE ? AS ?", (target, namespace.schema))
    finally:
        cursor.close()


def build_engine(url: str, *, tenant_dir: Optional[Path] = None, **kwargs) -> Engine:
    """Create an engine whose connections can reach every allowlisted tenant.

    On SQLite each tenant namespace is an attached database (in memory when
    ``tenant_dir`` is None) and every transaction opens with BEGIN IMMEDIATE so
    concurrent writers serialize on the bed rows they check. Read-only units of
    work open a deferred BEGIN instead and do not queue behind writers.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    connect_args.setdefault("timeout", 30)
    sqlite_engine = create_engine(url, echo=False, connect_args=connect_args, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys = ON")
        _attach_sqlite_tenants(dbapi_connection, tenant_dir)

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


engine = build_engine(DATABASE_URL, tenant_dir=TENANT_DIR if DATABASE_URL.startswith("sqlite") else None)


def tenant_engine(namespace: TenantNamespace, bind: Optional[Engine] = None) -> Engine:
    return (bind or engine).execution_options(schema_translate_map={None: namespace.schema})


def _schema_needs_rebuild(bind: Engine, namespace: TenantNamespace) -> bool:
    inspector = inspect(bind)
    existing_tables = set(inspector.get_table_names(schema=namespace.schema))

    for table_name, required_cols in REQUIRED_COLUMNS.items():
        if table_name not in existing_tables:
            continue
        existing_cols = {col["name"] for col in inspector.get_columns(table_name, schema=namespace.schema)}
        if not required_cols.issubset(existing_cols):
            return True

    return False


def create_tenant_schema(namespace: TenantNamespace, bind: Optional[Engine] = None):
    base = bind or engine
    if base.dialect.name == "postgresql":
        quoted = base.dialect.identifier_preparer.quote_schema(namespace.schema)
        with base.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quoted}"))

    scoped = tenant_engine(namespace, base)
    if _schema_needs_rebuild(base, namespace):
        logger.warning("Schema mismatch detected for %s. Rebuilding tenant tables.", namespace.tenant_id)
        SQLModel.metadata.drop_all(scoped, tables=TENANT_TABLES)
    SQLModel.metadata.create_all(scoped, tables=TENANT_TABLES)


def create_db(bind: Optional[Engine] = None):
    for namespace in known_namespaces():
        create_tenant_schema(namespace, bind)


def drop_db(bind: Optional[Engine] = None):
    for namespace in known_namespaces():
        SQLModel.metadata.drop_all(tenant_engine(namespace, bind), tables=TENANT_TABLES)


@contextmanager
def tenant_session(namespace: TenantNamespace, bind: Optional[Engine] = None) -> Iterator[Session]:
    with Session(tenant_engine(namespace, bind), expire_on_commit=False) as session:
        session.info["tenant"] = namespace
        yield session


def bind_tenant(session: Session, namespace: TenantNamespace, *, read_only: bool = False):
    """Assert the tenant binding as the first statement of a transaction."""
    bound = session.info.get("tenant")
    if bound != namespace:
        raise TenantBindingError(
            f"Session is bound to {getattr(bound, 'tenant_id', None)!r}, not {namespace.tenant_id!r}"
        )
    connection = session.connection(execution_options={READ_ONLY_OPTION: True} if read_only else None)
    if connection.dialect.name == "postgresql":
        quoted = connection.dialect.identifier_preparer.quote_schema(namespace.schema)
        connection.execute(text(f"SET LOCAL search_path TO {quoted}, public"))


@contextmanager
def unit_of_work(session: Session, namespace: TenantNamespace, *, read_only: bool = False) -> Iterator[Session]:
    """Run a block as one tenant-bound transaction; commit on success, roll back on error.

    Pass ``read_only=True`` for queries that take no row locks and write nothing.
    """
    if session.new or session.dirty or session.deleted:
        raise TenantBindingError("Session has pending changes outside a unit of work")
    if session.in_transaction():
        session.rollback()

    with session.begin():
        bind_tenant(session, namespace, read_only=read_only)
        session.expire_all()
        yield session


def get_session(tenant: TenantNamespace = Depends(get_tenant)):
    with tenant_session(tenant) as session:
        yield session
