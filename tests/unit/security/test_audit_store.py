"""
Tests for AuditStore - Append-only audit trail on DuckDB.

Covers:
- Newest-first ordering (ties broken by insertion order)
- Conjunctive filters and inclusive date range
- Offset pagination with filtered totals
- Streaming export and CSV rendering
- Retention deletes (strictly older)
- Write failures surface as StorageError
- Scalar "changes" metadata reads back without error
- Data subject access requests
"""

import csv
import io
import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import T0, fake
from grantshield.errors import NotFoundError, StorageError, ValidationError
from grantshield.security.audit import (
    CSV_HEADER,
    DATA_REQUEST_RESOURCE,
    AuditFilters,
    AuditStore,
    DataRequestService,
)
from grantshield.security.models import (
    AuditAction,
    AuditEvent,
    AuditStatus,
    EventMetadata,
    Resource,
)


@pytest.fixture
def store(db, clock) -> AuditStore:
    return AuditStore(db, clock=clock)


def _event(minutes: int = 0, user_id: str = "user-1", **overrides) -> AuditEvent:
    fields = dict(
        timestamp=T0 + timedelta(minutes=minutes),
        user_id=user_id,
        action=AuditAction.READ,
        resource=Resource(type="grant", id="g-1"),
        metadata=EventMetadata(ip="10.0.0.1", user_agent="pytest"),
        status=AuditStatus.SUCCESS,
    )
    fields.update(overrides)
    return AuditEvent(**fields)


# =============================================================================
# Append / ordering
# =============================================================================


class TestAppend:
    """Tests for append() and record()"""

    def test_record_stamps_clock_time_and_round_trips(self, store, clock):
        """record() should use the clock and persist every field"""
        event = store.record(
            "user-7",
            AuditAction.APPROVE,
            "application",
            "app-9",
            ip="192.168.1.5",
            user_agent="Mozilla/5.0",
            changes={"status": "approved"},
            extra={"grantId": "g-3"},
        )

        assert event.timestamp == clock.now()
        stored = store.list_all()
        assert stored == [event]
        assert stored[0].metadata.extra == {"grantId": "g-3"}
        assert stored[0].metadata.changes == {"status": "approved"}

    def test_list_is_newest_first(self, store):
        """Events should come back newest first regardless of insert order"""
        for minutes in (5, 1, 9, 3):
            store.append(_event(minutes))

        timestamps = [e.timestamp for e in store.list_all()]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_equal_timestamps_newest_insert_first(self, store):
        """Ties on timestamp should be broken by insertion order"""
        store.append(_event(0, resource=Resource("grant", "first")))
        store.append(_event(0, resource=Resource("grant", "second")))

        ids = [e.resource.id for e in store.list_all()]
        assert ids == ["second", "first"]

    def test_append_failure_raises_storage_error(self):
        """A failed write should propagate, never drop silently"""
        failing_db = MagicMock()
        failing_db.execute.side_effect = StorageError("disk full", operation="audit append")

        with pytest.raises(StorageError):
            AuditStore(failing_db).append(_event())


# =============================================================================
# Query
# =============================================================================


class TestQuery:
    """Tests for query() filters and pagination"""

    def test_filters_are_conjunctive(self, store):
        """Only events matching every filter should be returned"""
        store.append(_event(1, user_id="alice", action=AuditAction.LOGIN))
        store.append(_event(2, user_id="alice", action=AuditAction.READ))
        store.append(_event(3, user_id="bob", action=AuditAction.LOGIN))
        store.append(
            _event(4, user_id="alice", action=AuditAction.LOGIN, status=AuditStatus.FAILURE)
        )

        events, total = store.query(
            AuditFilters(
                user_id="alice", action=AuditAction.LOGIN, status=AuditStatus.SUCCESS
            )
        )

        assert total == 1
        assert events[0].timestamp == T0 + timedelta(minutes=1)

    def test_resource_type_filter(self, store):
        store.append(_event(1, resource=Resource("grant", "g-1")))
        store.append(_event(2, resource=Resource("document", "d-1")))

        events, total = store.query(AuditFilters(resource_type="document"))

        assert total == 1
        assert events[0].resource == Resource("document", "d-1")

    def test_date_range_is_inclusive(self, store):
        """Events exactly on start or end should be included"""
        for minutes in range(0, 10):
            store.append(_event(minutes))

        events, total = store.query(
            AuditFilters(
                start_date=T0 + timedelta(minutes=2),
                end_date=T0 + timedelta(minutes=5),
            )
        )

        assert total == 4
        assert [e.timestamp.minute for e in events] == [5, 4, 3, 2]

    @pytest.mark.parametrize(
        "page,page_size,expected_minutes",
        [
            (1, 50, list(range(119, 69, -1))),
            (2, 50, list(range(69, 19, -1))),
            (3, 50, list(range(19, -1, -1))),
            (4, 50, []),
        ],
        ids=["first", "middle", "partial-last", "past-end"],
    )
    def test_pagination_windows(self, store, page, page_size, expected_minutes):
        """Page p of size n should cover records [(p-1)*n, p*n) newest first"""
        for minutes in range(120):
            store.append(_event(minutes))

        events, total = store.query(page=page, page_size=page_size)

        assert total == 120
        assert [
            int((e.timestamp - T0).total_seconds() // 60) for e in events
        ] == expected_minutes

    def test_total_counts_filtered_set(self, store):
        for minutes in range(30):
            store.append(_event(minutes, user_id="alice" if minutes % 3 else "bob"))

        events, total = store.query(AuditFilters(user_id="bob"), page=1, page_size=4)

        assert len(events) == 4
        assert total == 10

    @pytest.mark.parametrize("page,page_size", [(0, 50), (-1, 50), (1, 0)])
    def test_invalid_paging_rejected(self, store, page, page_size):
        with pytest.raises(ValidationError):
            store.query(page=page, page_size=page_size)


class TestFiltersFromQuery:
    """Tests for AuditFilters.from_query()"""

    def test_parses_camel_case_args(self):
        filters = AuditFilters.from_query(
            {
                "userId": "u-1",
                "action": "export",
                "resourceType": "grant",
                "status": "failure",
                "startDate": "2025-03-01T00:00:00Z",
                "endDate": "2025-03-02T00:00:00+00:00",
            }
        )

        assert filters.user_id == "u-1"
        assert filters.action is AuditAction.EXPORT
        assert filters.resource_type == "grant"
        assert filters.status is AuditStatus.FAILURE
        assert filters.start_date < filters.end_date

    def test_empty_args_mean_no_filters(self):
        assert AuditFilters.from_query({}) == AuditFilters()

    @pytest.mark.parametrize(
        "args",
        [{"action": "hack"}, {"status": "maybe"}, {"startDate": "yesterday"}],
        ids=["action", "status", "date"],
    )
    def test_invalid_values_rejected(self, args):
        with pytest.raises(ValidationError):
            AuditFilters.from_query(args)


# =============================================================================
# Export
# =============================================================================


class TestExport:
    """Tests for export_all() and export_csv()"""

    def test_export_all_pages_through_everything(self, store):
        """Small pages should still yield every event once, newest first"""
        for minutes in range(23):
            store.append(_event(minutes))

        exported = list(store.export_all(page_size=5))

        assert len(exported) == 23
        assert exported == store.list_all()

    def test_export_all_is_restartable(self, store):
        for minutes in range(3):
            store.append(_event(minutes))

        assert list(store.export_all()) == list(store.export_all())

    def test_export_all_empty_store(self, store):
        assert list(store.export_all()) == []

    def test_csv_header_and_rows(self, store):
        """CSV should carry the viewer's columns with type:id resources"""
        user = fake.user_name()
        store.append(
            _event(
                0,
                user_id=user,
                action=AuditAction.UPDATE,
                resource=Resource("application", "app-1"),
                metadata=EventMetadata(ip="1.2.3.4", user_agent="ua, with comma"),
            )
        )

        rows = list(csv.reader(io.StringIO(store.export_csv())))

        assert rows[0] == CSV_HEADER
        assert rows[0] == ["Timestamp", "User", "Action", "Resource", "Status", "Details"]
        assert rows[1][:5] == [
            "2025-03-01 12:00:00",
            user,
            "update",
            "application:app-1",
            "success",
        ]
        assert json.loads(rows[1][5]) == {"ip": "1.2.3.4", "userAgent": "ua, with comma"}

    def test_csv_respects_filters(self, store):
        store.append(_event(0, user_id="alice"))
        store.append(_event(1, user_id="bob"))

        rows = list(csv.reader(io.StringIO(store.export_csv(AuditFilters(user_id="bob")))))

        assert len(rows) == 2
        assert rows[1][1] == "bob"


# =============================================================================
# Retention
# =============================================================================


class TestDeleteBefore:
    """Tests for delete_before()"""

    def test_deletes_strictly_older(self, store):
        """An event exactly at the cutoff should survive"""
        store.append(_event(-10))
        store.append(_event(0))
        store.append(_event(10))

        deleted = store.delete_before(T0)

        assert deleted == 1
        assert [e.timestamp for e in store.list_all()] == [
            T0 + timedelta(minutes=10),
            T0,
        ]


class TestEventMetadata:
    """Metadata keys that clash with the typed fields"""

    def test_scalar_changes_kept_in_extra(self):
        metadata = EventMetadata.from_dict({"ip": "1.2.3.4", "changes": "abc"})

        assert metadata.changes is None
        assert metadata.extra == {"changes": "abc"}
        assert metadata.to_dict() == {"ip": "1.2.3.4", "userAgent": "unknown", "changes": "abc"}

    def test_mapping_changes_is_typed(self):
        metadata = EventMetadata.from_dict({"changes": {"budget": 10}})

        assert metadata.changes == {"budget": 10}
        assert metadata.extra == {}

    def test_stored_scalar_changes_reads_back(self, store):
        store.append(_event(metadata=EventMetadata(extra={"changes": ["a", "b"]})))

        [event] = store.list_all()
        _, total = store.query(AuditFilters(user_id="user-1"))
        rows = list(csv.reader(io.StringIO(store.export_csv())))

        assert event.metadata.to_dict()["changes"] == ["a", "b"]
        assert total == 1
        assert json.loads(rows[1][5])["changes"] == ["a", "b"]


class TestDataRequest:
    """DataRequestService.collect"""

    @pytest.fixture
    def service(self, db, store) -> DataRequestService:
        return DataRequestService(db, store)

    @pytest.fixture
    def subject(self, db, store):
        email = fake.email()
        db.execute(
            "seed user",
            "INSERT INTO users (id, email, last_activity) VALUES (?, ?, ?)",
            ["user-1", email, T0.replace(tzinfo=None)],
        )
        for doc_id, days in (("doc-1", 2), ("doc-2", 1)):
            db.execute(
                "seed document",
                "INSERT INTO documents (id, user_id, path, created_at) VALUES (?, ?, ?, ?)",
                [
                    doc_id,
                    "user-1",
                    f"/uploads/{doc_id}.pdf",
                    (T0 - timedelta(days=days)).replace(tzinfo=None),
                ],
            )
        db.execute(
            "seed other document",
            "INSERT INTO documents (id, user_id, path, created_at) VALUES (?, ?, ?, ?)",
            ["doc-x", "user-2", "/uploads/doc-x.pdf", T0.replace(tzinfo=None)],
        )
        store.append(_event(minutes=-5))
        store.append(_event(minutes=-4, user_id="user-2"))
        return email

    def test_collects_only_the_subjects_data(self, service, subject):
        export = service.collect("user-1", "req-1")

        assert export.personal_info == {
            "id": "user-1",
            "email": subject,
            "lastActivity": T0.isoformat(),
        }
        assert [d["id"] for d in export.documents] == ["doc-1", "doc-2"]
        assert all(d["userId"] == "user-1" for d in export.documents)
        assert [e.user_id for e in export.audit_logs] == ["user-1"]

    def test_request_is_audited_after_collection(self, service, store, subject):
        export = service.collect("user-1", "req-1", ip="10.0.0.9", user_agent="portal")

        assert all(e.resource.type != DATA_REQUEST_RESOURCE for e in export.audit_logs)
        [logged] = store.query(AuditFilters(resource_type=DATA_REQUEST_RESOURCE))[0]
        assert logged.user_id == "user-1"
        assert logged.action is AuditAction.EXPORT
        assert logged.resource.id == "req-1"
        assert logged.metadata.ip == "10.0.0.9"
        assert logged.metadata.extra == {}

    def test_admin_requester_recorded(self, service, store, subject):
        service.collect("user-1", "req-2", requested_by="admin-1")

        [logged] = store.query(AuditFilters(resource_type=DATA_REQUEST_RESOURCE))[0]
        assert logged.metadata.extra == {"requestedBy": "admin-1"}

    def test_to_dict_shape(self, service, subject):
        data = service.collect("user-1", "req-1").to_dict()

        assert set(data) == {"requestId", "personalInfo", "documents", "auditLogs"}
        assert data["auditLogs"][0]["userId"] == "user-1"

    def test_unknown_user_not_found_and_not_audited(self, service, store):
        with pytest.raises(NotFoundError):
            service.collect("ghost", "req-3")

        assert store.count(AuditFilters(resource_type=DATA_REQUEST_RESOURCE)) == 0

    def test_storage_failure_propagates(self, store):
        db = MagicMock()
        db.fetchone.side_effect = StorageError("timeout", operation="data request user")

        with pytest.raises(StorageError):
            DataRequestService(db, store).collect("user-1", "req-4")
