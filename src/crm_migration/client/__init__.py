"""Record-store clients and exceptions."""

from crm_migration.client.record_store import (
    OrgConnectionManager,
    QueryResult,
    RecordStoreClient,
    SalesforceClient,
)

__all__ = [
    "OrgConnectionManager",
    "QueryResult",
    "RecordStoreClient",
    "SalesforceClient",
]
