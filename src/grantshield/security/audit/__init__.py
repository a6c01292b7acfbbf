"""
Audit Trail Module

Append-only store of security-relevant events with filtered,
paginated and streaming reads, plus data subject access requests.
"""

from .data_request import DATA_REQUEST_RESOURCE, DataRequestService, DataSubjectExport
from .store import (
    CSV_HEADER,
    DEFAULT_PAGE_SIZE,
    EXPORT_PAGE_SIZE,
    AuditFilters,
    AuditStore,
    events_to_dicts,
)

__all__ = [
    "CSV_HEADER",
    "DATA_REQUEST_RESOURCE",
    "DEFAULT_PAGE_SIZE",
    "EXPORT_PAGE_SIZE",
    "AuditFilters",
    "AuditStore",
    "DataRequestService",
    "DataSubjectExport",
    "events_to_dicts",
]
