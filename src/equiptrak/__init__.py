"""
equiptrak - persistence and record-lifecycle core for equipment certification.

Application code reaches storage only through :class:`QueryAdapter`
(or :class:`SQLStringInterpreter` for SQL-shaped call sites), and writes
numbered or composite records through :class:`CertificateService` and
:class:`TransactionalRecordWriter`.

    from equiptrak.storage.factory import open_storage

    storage = open_storage()
    rows = storage.adapter.query(QueryDescriptor(table="companies", limit=20))
"""

__version__ = "0.3.0"
