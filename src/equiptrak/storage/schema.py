"""
Physical schema: column allow-lists, required fields, and DDL.

Every identifier that ends up inside a SQL string or a REST path comes from
the constant mappings in this module. Callers may name columns, but a name
is only used after it has been found in ``TABLE_COLUMNS``; values are
always bound, never interpolated.

Tables
------
==========================  ===============================================
Table                       Purpose
==========================  ===============================================
``companies``               Customers
``contacts``                People at a company
``equipment``               Serviceable assets
``service_records``         Lifting-equipment service certificates
``compressor_records``      Compressor certificates (legacy singular name)
``compressors_records``     Compressor certificates (current plural name)
``lift_service_records``    Lift service certificates
``spot_welder_records``     Spot welder certificates (current name)
``spot_welders``            Spot welder certificates (older name)
``work_orders``             Composite parent with derived ``total``/``vat``
``work_order_items``        Line items owned by one work order
``record_sequences``        Atomic counters behind ``SequenceMode.ATOMIC``
==========================  ===============================================
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from equiptrak.core.adapters.base import DatabaseAdapter
from equiptrak.core.errors import ValidationError
from equiptrak.core.logging import get_logger

logger = get_logger(__name__)

IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

SEQUENCE_TABLE = "record_sequences"

# ── Column definitions ───────────────────────────────────────────────────
# (column, logical type, constraint)

_TEXT = "text"
_DATE = "date"
_MONEY = "money"
_INT = "int"
_TS = "timestamp"
_BOOL = "bool"

_TYPES: dict[str, dict[str, str]] = {
    "sqlite": {
        _TEXT: "TEXT", _DATE: "DATE", _MONEY: "NUMERIC", _INT: "INTEGER",
        _TS: "TEXT", _BOOL: "INTEGER",
    },
    "postgresql": {
        _TEXT: "TEXT", _DATE: "DATE", _MONEY: "NUMERIC(12,2)", _INT: "INTEGER",
        _TS: "TIMESTAMPTZ", _BOOL: "BOOLEAN",
    },
}

_AUDIT = [("created_at", _TS, "NOT NULL"), ("updated_at", _TS, "NOT NULL")]

_CERTIFICATE_COMMON = [
    ("id", _TEXT, "PRIMARY KEY"),
    ("company_id", _TEXT, "NOT NULL"),
    ("certificate_number", _TEXT, "UNIQUE"),
    ("service_date", _DATE, "NOT NULL"),
    ("retest_date", _DATE, "NOT NULL"),
    ("engineer_name", _TEXT, "NOT NULL"),
    ("status", _TEXT, "NOT NULL"),
    ("notes", _TEXT, ""),
]

_COMPRESSOR_COLUMNS = _CERTIFICATE_COMMON + [
    ("equipment_name", _TEXT, ""),
    ("equipment_serial", _TEXT, ""),
    ("manufacturer", _TEXT, ""),
    ("model", _TEXT, ""),
    ("location", _TEXT, ""),
    ("pressure_test_result", _TEXT, ""),
    ("safety_valve_test", _TEXT, ""),
    ("oil_level", _TEXT, ""),
    ("belt_condition", _TEXT, ""),
    ("filter_check_result", _TEXT, ""),
] + _AUDIT

_LIFT_SERVICE_COLUMNS = _CERTIFICATE_COMMON + [
    ("product_category", _TEXT, ""),
    ("model", _TEXT, ""),
    ("serial_number", _TEXT, ""),
    ("swl", _TEXT, ""),
    ("signature_image", _TEXT, ""),
] + [
    (f"{check}_test", _BOOL, "")
    for check in (
        "safe_working", "emergency_stops", "limit_switches", "safety_devices", "hydraulic_system",
        "pressure_relief", "electrical_system", "platform_operation", "fail_safe_devices",
        "lifting_structure",
    )
] + _AUDIT

_SPOT_WELDER_COLUMNS = _CERTIFICATE_COMMON + [
    ("model", _TEXT, ""),
    ("serial_number", _TEXT, ""),
    ("equipment_type", _TEXT, ""),
    ("voltage_max", _MONEY, ""),
    ("voltage_min", _MONEY, ""),
    ("air_pressure", _MONEY, ""),
    ("tip_pressure", _MONEY, ""),
    ("length", _MONEY, ""),
    ("diameter", _MONEY, ""),
] + [
    (f"{field}{i}", _TEXT, "")
    for i in range(1, 5)
    for field in ("machine", "meter", "machine_time", "meter_time")
] + _AUDIT

TABLE_DEFINITIONS: dict[str, list[tuple[str, str, str]]] = {
    "companies": [
        ("id", _TEXT, "PRIMARY KEY"),
        ("company_name", _TEXT, "NOT NULL"),
        ("address", _TEXT, ""),
        ("city", _TEXT, ""),
        ("county", _TEXT, ""),
        ("postcode", _TEXT, ""),
        ("country", _TEXT, ""),
        ("telephone", _TEXT, ""),
        ("email", _TEXT, ""),
        ("website", _TEXT, ""),
        ("industry", _TEXT, ""),
        ("notes", _TEXT, ""),
    ] + _AUDIT,
    "contacts": [
        ("id", _TEXT, "PRIMARY KEY"),
        ("company_id", _TEXT, "NOT NULL"),
        ("first_name", _TEXT, ""),
        ("last_name", _TEXT, ""),
        ("email", _TEXT, ""),
        ("telephone", _TEXT, ""),
        ("mobile", _TEXT, ""),
        ("job_title", _TEXT, ""),
        ("is_primary", _BOOL, ""),
    ] + _AUDIT,
    "equipment": [
        ("id", _TEXT, "PRIMARY KEY"),
        ("company_id", _TEXT, "NOT NULL"),
        ("name", _TEXT, ""),
        ("serial_number", _TEXT, ""),
        ("model", _TEXT, ""),
        ("manufacturer", _TEXT, ""),
        ("equipment_type", _TEXT, ""),
        ("status", _TEXT, ""),
        ("last_service_date", _DATE, ""),
        ("next_service_date", _DATE, ""),
    ] + _AUDIT,
    "service_records": _CERTIFICATE_COMMON
    + [(f"equipment_name_{i}", _TEXT, "") for i in range(1, 7)]
    + [(f"equipment_serial_{i}", _TEXT, "") for i in range(1, 7)]
    + _AUDIT,
    "compressor_records": _COMPRESSOR_COLUMNS,
    "compressors_records": _COMPRESSOR_COLUMNS,
    "lift_service_records": _LIFT_SERVICE_COLUMNS,
    "spot_welder_records": _SPOT_WELDER_COLUMNS,
    "spot_welders": _SPOT_WELDER_COLUMNS,
    "work_orders": [
        ("id", _TEXT, "PRIMARY KEY"),
        ("company_id", _TEXT, "NOT NULL"),
        ("work_order_number", _TEXT, "UNIQUE"),
        ("date", _DATE, "NOT NULL"),
        ("job_tracker", _TEXT, ""),
        ("order_number", _TEXT, ""),
        ("taken_by", _TEXT, ""),
        ("staff", _TEXT, ""),
        ("status", _TEXT, ""),
        ("description", _TEXT, ""),
        ("internal_notes", _TEXT, ""),
        ("quickbooks_ref", _TEXT, ""),
        ("type", _TEXT, ""),
        ("carrier", _TEXT, ""),
        ("discount", _MONEY, ""),
        ("vat_rate", _MONEY, "NOT NULL"),
        ("total", _MONEY, "NOT NULL"),
        ("vat", _MONEY, "NOT NULL"),
    ] + _AUDIT,
    "work_order_items": [
        ("id", _TEXT, "PRIMARY KEY"),
        ("work_order_id", _TEXT, "NOT NULL REFERENCES work_orders(id)"),
        ("product_id", _TEXT, ""),
        ("sku", _TEXT, ""),
        ("description", _TEXT, ""),
        ("quantity", _INT, "NOT NULL"),
        ("price", _MONEY, "NOT NULL"),
        ("subtotal", _MONEY, "NOT NULL"),
    ] + _AUDIT,
}

TABLE_COLUMNS: dict[str, frozenset[str]] = {
    table: frozenset(name for name, _, _ in columns)
    for table, columns in TABLE_DEFINITIONS.items()
}

_CERTIFICATE_REQUIRED = frozenset({"company_id", "service_date", "engineer_name"})

REQUIRED_COLUMNS: dict[str, frozenset[str]] = {
    "companies": frozenset({"company_name"}),
    "contacts": frozenset({"company_id"}),
    "equipment": frozenset({"company_id"}),
    "service_records": _CERTIFICATE_REQUIRED,
    "compressor_records": _CERTIFICATE_REQUIRED,
    "compressors_records": _CERTIFICATE_REQUIRED,
    "lift_service_records": _CERTIFICATE_REQUIRED,
    "spot_welder_records": _CERTIFICATE_REQUIRED,
    "spot_welders": _CERTIFICATE_REQUIRED,
    "work_orders": frozenset({"company_id", "date"}),
    "work_order_items": frozenset({"work_order_id"}),
}

# Written by the adapter, never taken from the caller.
SERVER_COLUMNS = frozenset({"created_at", "updated_at"})

_SEQUENCE_DDL = {
    "sqlite": (
        f"CREATE TABLE IF NOT EXISTS {SEQUENCE_TABLE} ("
        "namespace TEXT PRIMARY KEY, last_value INTEGER NOT NULL, updated_at TEXT)"
    ),
    "postgresql": (
        f"CREATE TABLE IF NOT EXISTS {SEQUENCE_TABLE} ("
        "namespace TEXT PRIMARY KEY, last_value BIGINT NOT NULL, updated_at TIMESTAMPTZ)"
    ),
}

# Functions the REST deployment exposes under /rpc/ for SequenceMode.ATOMIC.
POSTGREST_FUNCTIONS = f"""
CREATE OR REPLACE FUNCTION next_sequence_value(p_namespace TEXT, p_start BIGINT)
RETURNS BIGINT AS $$
DECLARE
    issued BIGINT;
BEGIN
    INSERT INTO {SEQUENCE_TABLE} (namespace, last_value, updated_at)
    VALUES (p_namespace, p_start - 1, NOW())
    ON CONFLICT (namespace) DO NOTHING;

    UPDATE {SEQUENCE_TABLE}
       SET last_value = GREATEST(last_value + 1, p_start), updated_at = NOW()
     WHERE namespace = p_namespace
    RETURNING last_value INTO issued;

    RETURN issued;
END;
$$ LANGUAGE plpgsql;
"""


def check_identifier(name: str) -> str:
    """Reject anything that is not a plain lower-case SQL identifier."""
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValidationError(
            f"Invalid identifier: {name!r}",
            field="identifier",
            value=name,
            constraint=IDENTIFIER_RE.pattern,
        )
    return name


def allowed_columns(table: str) -> frozenset[str]:
    """Column allow-list for a physical table."""
    try:
        return TABLE_COLUMNS[table]
    except KeyError:
        raise ValidationError(f"Unknown table: {table}", field="table", value=table) from None


def check_columns(table: str, columns: Iterable[str], *, role: str = "column") -> None:
    """Raise ValidationError for the first column not on the table's allow-list."""
    allowed = allowed_columns(table)
    for column in columns:
        if column not in allowed:
            raise ValidationError(
                f"Unknown {role} '{column}' for table '{table}'",
                field=column,
                constraint="allow-list",
            ).with_context(table=table)


def table_ddl(table: str, dialect_name: str) -> str:
    """CREATE TABLE statement for one physical table."""
    types = _TYPES["postgresql" if dialect_name == "postgresql" else "sqlite"]
    parts = []
    for name, kind, constraint in TABLE_DEFINITIONS[table]:
        parts.append(f"{name} {types[kind]} {constraint}".rstrip())
    return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(parts)})"


def create_tables(adapter: DatabaseAdapter, tables: Iterable[str] | None = None) -> list[str]:
    """Create the given tables (default: all) plus the sequence table.

    Returns the names of the tables that were created or already existed.
    """
    names = list(TABLE_DEFINITIONS) if tables is None else list(tables)
    for name in names:
        allowed_columns(name)
    # Parents before children so REFERENCES resolve on PostgreSQL.
    names.sort(key=lambda name: list(TABLE_DEFINITIONS).index(name))
    dialect_name = adapter.dialect.name
    with adapter.transaction() as session:
        for name in names:
            session.execute(table_ddl(name, dialect_name))
        session.execute(_SEQUENCE_DDL[dialect_name])
    logger.info("schema_created", tables=names, dialect=dialect_name)
    return names


__all__ = [
    "TABLE_DEFINITIONS",
    "TABLE_COLUMNS",
    "REQUIRED_COLUMNS",
    "SERVER_COLUMNS",
    "SEQUENCE_TABLE",
    "POSTGREST_FUNCTIONS",
    "check_identifier",
    "allowed_columns",
    "check_columns",
    "table_ddl",
    "create_tables",
]
