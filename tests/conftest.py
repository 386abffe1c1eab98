"""Shared fixtures: an in-memory record store standing in for an org."""

from collections.abc import Callable
from typing import Any

import pytest

from crm_migration.client.record_store import (
    FieldMetadata,
    ObjectMetadata,
    OrgConnectionManager,
    PicklistData,
    PicklistEntry,
    PicklistMetadata,
    QueryResult,
    is_count_query,
)
from crm_migration.config import DEFAULT_MANAGED_EXTERNAL_ID_FIELD
from crm_migration.validation.engine import ValidationEngine

QueryMatcher = str | Callable[[str], bool]
QueryResponse = QueryResult | list[dict[str, Any]] | Callable[[str], QueryResult]


class FakeRecordStoreClient:
    """Record store answering queries from registered responses.

    Responses are matched in registration order; a string matcher matches
    when it is a substring of the query. Unmatched queries return no rows,
    or a zero count for ``COUNT()`` queries.
    """

    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.queries: list[str] = []
        self.metadata_requests: list[str] = []
        self._responses: list[tuple[QueryMatcher, QueryResponse]] = []
        self._objects: dict[str, list[FieldMetadata]] = {}

    def on_query(self, matcher: QueryMatcher, response: QueryResponse) -> None:
        self._responses.append((matcher, response))

    def add_object(
        self,
        object_name: str,
        fields: list[str] | None = None,
        picklists: dict[str, list[str] | list[PicklistEntry]] | None = None,
        multi_select: tuple[str, ...] = (),
    ) -> None:
        described = [FieldMetadata(name=name, type="string") for name in fields or []]
        for field_name, values in (picklists or {}).items():
            entries = [
                v if isinstance(v, PicklistEntry) else PicklistEntry(value=v) for v in values
            ]
            described.append(
                FieldMetadata(
                    name=field_name,
                    type="multipicklist" if field_name in multi_select else "picklist",
                    picklist_values=entries,
                )
            )
        self._objects[object_name] = described

    def _match(self, soql: str) -> QueryResponse | None:
        for matcher, response in self._responses:
            if callable(matcher):
                if matcher(soql):
                    return response
            elif matcher in soql:
                return response
        return None

    async def query(self, soql: str) -> QueryResult:
        self.queries.append(soql)
        response = self._match(soql)
        if response is None:
            if is_count_query(soql):
                return QueryResult(success=True, aggregate_count=0)
            return QueryResult(success=True, records=[])
        if isinstance(response, QueryResult):
            return response
        if isinstance(response, list):
            return QueryResult(success=True, records=response)
        return response(soql)

    async def get_object_metadata(self, object_name: str) -> ObjectMetadata:
        self.metadata_requests.append(object_name)
        if object_name not in self._objects:
            return ObjectMetadata(
                success=False, error=f"sObject type '{object_name}' is not supported"
            )
        return ObjectMetadata(success=True, fields=self._objects[object_name])

    async def get_picklist_values(self, object_name: str, field_name: str) -> PicklistMetadata:
        metadata = await self.get_object_metadata(object_name)
        if not metadata.success:
            return PicklistMetadata(success=False, error=metadata.error)
        field_metadata = metadata.get_field(field_name)
        if field_metadata is None or not field_metadata.is_picklist:
            return PicklistMetadata(success=False, error=f"{field_name} is not a picklist")
        return PicklistMetadata(
            success=True, data=PicklistData(values=field_metadata.picklist_values)
        )

    async def check_health(self) -> bool:
        return self.healthy


@pytest.fixture
def source() -> FakeRecordStoreClient:
    return FakeRecordStoreClient()


@pytest.fixture
def target() -> FakeRecordStoreClient:
    return FakeRecordStoreClient()


@pytest.fixture
def connections(source, target) -> OrgConnectionManager:
    return OrgConnectionManager({"source": source, "target": target})


@pytest.fixture
def engine(connections) -> ValidationEngine:
    return ValidationEngine(connections)


@pytest.fixture
def managed_field() -> str:
    return DEFAULT_MANAGED_EXTERNAL_ID_FIELD
