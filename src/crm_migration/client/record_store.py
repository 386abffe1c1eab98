"""Record-store clients for source and target orgs.

``RecordStoreClient`` is the interface the validation engine depends on.
``SalesforceClient`` implements it over the REST API, and
``OrgConnectionManager`` is the org-keyed accessor that also reports health.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from crm_migration.client.base_client import BaseAPIClient
from crm_migration.client.exceptions import (
    APIError,
    CRMMigrationError,
    NetworkError,
    OrgNotConnectedError,
)
from crm_migration.config import MigrationConfig, OrgConfig
from crm_migration.query.builder import extract_field_names
from crm_migration.utils.logging import get_logger
from crm_migration.utils.retry import retry_with_backoff

logger = get_logger(__name__)

PICKLIST_FIELD_TYPES = frozenset({"picklist", "multipicklist"})

_COUNT_ONLY = re.compile(r"^COUNT\(\s*\)$", re.IGNORECASE)


@dataclass
class QueryResult:
    """Outcome of one query.

    ``aggregate_count`` is set instead of ``records`` when the projection is
    a bare ``COUNT()``.
    """

    success: bool
    records: list[dict[str, Any]] | None = None
    aggregate_count: int | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> "QueryResult":
        return cls(success=False, error=error, error_code=error_code)


@dataclass
class PicklistEntry:
    """One allowed value of an enumerated field."""

    value: str
    label: str | None = None
    active: bool = True
    default_value: bool = False


@dataclass
class FieldMetadata:
    """Schema of one field."""

    name: str
    type: str
    label: str | None = None
    picklist_values: list[PicklistEntry] = field(default_factory=list)
    restricted: bool = False

    @property
    def is_picklist(self) -> bool:
        return self.type.lower() in PICKLIST_FIELD_TYPES


@dataclass
class ObjectMetadata:
    """Outcome of an object describe."""

    success: bool
    fields: list[FieldMetadata] = field(default_factory=list)
    error: str | None = None

    def get_field(self, field_name: str) -> FieldMetadata | None:
        """Look up a field by API name, case-insensitively."""
        wanted = field_name.lower()
        for field_metadata in self.fields:
            if field_metadata.name.lower() == wanted:
                return field_metadata
        return None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


@dataclass
class PicklistData:
    """Allowed values of one picklist field."""

    values: list[PicklistEntry] = field(default_factory=list)
    restricted: bool = False
    default_value: str | None = None

    @property
    def active_values(self) -> list[str]:
        """Values currently selectable; inactive values never validate."""
        return [entry.value for entry in self.values if entry.active]


@dataclass
class PicklistMetadata:
    """Outcome of a picklist values lookup."""

    success: bool
    data: PicklistData | None = None
    error: str | None = None


@runtime_checkable
class RecordStoreClient(Protocol):
    """Query and metadata access to one org."""

    async def query(self, soql: str) -> QueryResult: ...

    async def get_object_metadata(self, object_name: str) -> ObjectMetadata: ...

    async def get_picklist_values(self, object_name: str, field_name: str) -> PicklistMetadata: ...

    async def check_health(self) -> bool: ...


def is_count_query(soql: str) -> bool:
    """True when the SELECT list is exactly ``COUNT()``."""
    fields = extract_field_names(soql)
    return len(fields) == 1 and bool(_COUNT_ONLY.match(fields[0]))


def clean_record(record: Any) -> Any:
    """Strip ``attributes`` from a record and its nested relationship objects."""
    if isinstance(record, dict):
        if "records" in record and "totalSize" in record:
            return [clean_record(child) for child in record.get("records", [])]
        return {key: clean_record(value) for key, value in record.items() if key != "attributes"}
    if isinstance(record, list):
        return [clean_record(item) for item in record]
    return record


def _error_code(error: APIError) -> str | None:
    if isinstance(error.response, dict):
        return error.response.get("errorCode")
    return None


class SalesforceClient(BaseAPIClient):
    """REST API client for one org.

    Describe results are cached per client instance so repeated metadata
    lookups within a run cost one request per object.
    """

    def __init__(
        self,
        config: OrgConfig,
        rate_limit: int = 20,
        max_connections: int = 20,
        max_keepalive_connections: int = 10,
        retry_attempts: int = 3,
        retry_backoff_min: int = 1,
        retry_backoff_max: int = 30,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        **kwargs: Any,
    ):
        """Initialize org client.

        Args:
            config: Org connection configuration
            rate_limit: Maximum requests per second
            max_connections: Maximum number of connections in pool
            max_keepalive_connections: Maximum keep-alive connections
            retry_attempts: Attempts for transient errors
            retry_backoff_min: Minimum backoff seconds
            retry_backoff_max: Maximum backoff seconds
            log_payloads: Enable response payload logging
            max_payload_size: Maximum payload size to log before truncation
            **kwargs: Passed to BaseAPIClient (e.g. transport)
        """
        super().__init__(
            base_url=config.instance_url,
            token=config.access_token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=rate_limit,
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
            log_payloads=log_payloads,
            max_payload_size=max_payload_size,
            **kwargs,
        )
        self.api_version = config.api_version
        self._describe_cache: dict[str, ObjectMetadata] = {}
        self._get = retry_with_backoff(
            max_attempts=retry_attempts, min_wait=retry_backoff_min, max_wait=retry_backoff_max
        )(self.get)

    @property
    def api_root(self) -> str:
        return f"services/data/v{self.api_version}"

    async def query(self, soql: str) -> QueryResult:
        """Run a query, following ``nextRecordsUrl`` until done.

        Returns:
            QueryResult; failures are reported with ``success=False``
        """
        logger.debug("soql_query", query=soql)

        try:
            response = await self._get(f"{self.api_root}/query", params={"q": soql})

            if is_count_query(soql):
                return QueryResult(success=True, aggregate_count=int(response.get("totalSize", 0)))

            records = [clean_record(r) for r in response.get("records", [])]
            while not response.get("done", True) and response.get("nextRecordsUrl"):
                response = await self._get(response["nextRecordsUrl"])
                records.extend(clean_record(r) for r in response.get("records", []))

        except APIError as e:
            logger.warning("soql_query_failed", error=e.message, error_code=_error_code(e))
            return QueryResult.failure(e.message, _error_code(e))
        except NetworkError as e:
            logger.warning("soql_query_failed", error=str(e))
            return QueryResult.failure(str(e))

        return QueryResult(success=True, records=records)

    async def get_object_metadata(self, object_name: str) -> ObjectMetadata:
        """Describe an object's fields."""
        if object_name in self._describe_cache:
            return self._describe_cache[object_name]

        try:
            response = await self._get(f"{self.api_root}/sobjects/{object_name}/describe")
        except (APIError, NetworkError) as e:
            logger.warning("describe_failed", object_name=object_name, error=str(e))
            return ObjectMetadata(success=False, error=str(e))

        metadata = ObjectMetadata(
            success=True,
            fields=[
                FieldMetadata(
                    name=f["name"],
                    type=f.get("type", "string"),
                    label=f.get("label"),
                    restricted=bool(f.get("restrictedPicklist", False)),
                    picklist_values=[
                        PicklistEntry(
                            value=p["value"],
                            label=p.get("label"),
                            active=bool(p.get("active", True)),
                            default_value=bool(p.get("defaultValue", False)),
                        )
                        for p in f.get("picklistValues") or []
                    ],
                )
                for f in response.get("fields", [])
            ],
        )
        self._describe_cache[object_name] = metadata
        return metadata

    async def get_picklist_values(self, object_name: str, field_name: str) -> PicklistMetadata:
        """Return the allowed values of a picklist field."""
        metadata = await self.get_object_metadata(object_name)
        if not metadata.success:
            return PicklistMetadata(success=False, error=metadata.error)

        field_metadata = metadata.get_field(field_name)
        if field_metadata is None:
            return PicklistMetadata(
                success=False, error=f"Field {field_name} not found on {object_name}"
            )
        if not field_metadata.is_picklist:
            return PicklistMetadata(
                success=False, error=f"Field {field_name} on {object_name} is not a picklist"
            )

        default = next((p.value for p in field_metadata.picklist_values if p.default_value), None)
        return PicklistMetadata(
            success=True,
            data=PicklistData(
                values=field_metadata.picklist_values,
                restricted=field_metadata.restricted,
                default_value=default,
            ),
        )

    async def check_health(self) -> bool:
        """Return True when the org answers an authenticated request."""
        try:
            await self.get(f"{self.api_root}/limits")
        except CRMMigrationError as e:
            logger.warning("org_health_check_failed", base_url=self.base_url, error=str(e))
            return False
        return True


class OrgConnectionManager:
    """Org-keyed accessor for record-store clients."""

    def __init__(self, clients: dict[str, RecordStoreClient] | None = None):
        self._clients: dict[str, RecordStoreClient] = dict(clients or {})

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "OrgConnectionManager":
        """Create a REST client for every configured org."""
        manager = cls()
        for org_id, org_config in config.orgs.items():
            manager.register(
                org_id,
                SalesforceClient(
                    config=org_config,
                    rate_limit=config.performance.rate_limit,
                    max_connections=config.performance.http_max_connections,
                    max_keepalive_connections=config.performance.http_max_keepalive_connections,
                    retry_attempts=config.performance.retry_attempts,
                    retry_backoff_min=config.performance.retry_backoff_min,
                    retry_backoff_max=config.performance.retry_backoff_max,
                    log_payloads=config.logging.log_payloads,
                    max_payload_size=config.logging.max_payload_size,
                ),
            )
        return manager

    def register(self, org_id: str, client: RecordStoreClient) -> None:
        self._clients[org_id] = client

    def get_client(self, org_id: str) -> RecordStoreClient:
        """Return the client for an org.

        Raises:
            OrgNotConnectedError: If no client is registered for the org
        """
        try:
            return self._clients[org_id]
        except KeyError:
            raise OrgNotConnectedError(f"Org '{org_id}' is not connected") from None

    @property
    def org_ids(self) -> list[str]:
        return list(self._clients)

    async def are_all_orgs_healthy(self, org_ids: list[str]) -> bool:
        """Check every org in turn; unknown or failing orgs are unhealthy."""
        for org_id in org_ids:
            try:
                healthy = await self.get_client(org_id).check_health()
            except Exception as e:
                logger.warning("org_health_check_error", org_id=org_id, error=str(e))
                healthy = False
            if not healthy:
                logger.warning("org_unhealthy", org_id=org_id)
                return False
        return True

    async def close(self) -> None:
        """Close every client that owns network resources."""
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()
