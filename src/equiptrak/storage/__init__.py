"""
Storage layer: one query surface over two backends.

Usage:
    from equiptrak.storage import QueryDescriptor, open_storage

    storage = open_storage()
    rows = storage.adapter.query(
        QueryDescriptor("service_records", filters={"company_id": company_id},
                        order={"service_date": "desc"}, limit=20)
    )
"""

from .adapter import QueryAdapter
from .descriptor import QueryDescriptor
from .drivers import Deadline, RestDriver, SqlDriver, StorageDriver, build_driver
from .entities import EntityRegistry, LogicalEntity, default_registry
from .factory import Storage, open_storage
from .interpreter import SQLStringInterpreter, parse
from .resolver import ResolvedTable, TableResolver
from .schema import TABLE_COLUMNS, create_tables
from .sequence import SequenceGenerator, SequenceNamespace, default_namespaces

__all__ = [
    # Query surface
    "QueryAdapter",
    "QueryDescriptor",
    "SQLStringInterpreter",
    "parse",
    # Drivers
    "StorageDriver",
    "SqlDriver",
    "RestDriver",
    "Deadline",
    "build_driver",
    # Schema
    "TABLE_COLUMNS",
    "create_tables",
    "LogicalEntity",
    "EntityRegistry",
    "default_registry",
    "ResolvedTable",
    "TableResolver",
    # Numbering
    "SequenceGenerator",
    "SequenceNamespace",
    "default_namespaces",
    # Wiring
    "Storage",
    "open_storage",
]
