"""
Record lifecycle: certificate status policy, certificates, work orders.

Only the status policy is re-exported here; the storage layer applies it
to every certificate row it reads or writes. Import the writers from their
modules::

    from equiptrak.records.composite import TransactionalRecordWriter
    from equiptrak.records.certificates import CertificateService
"""

from .status import (
    RETEST_INTERVAL,
    UPCOMING_WINDOW,
    CertificateStatusPolicy,
    StatusResult,
    apply_to_row,
    coerce_date,
    derive_status,
)

__all__ = [
    "RETEST_INTERVAL",
    "UPCOMING_WINDOW",
    "CertificateStatusPolicy",
    "StatusResult",
    "apply_to_row",
    "coerce_date",
    "derive_status",
]
