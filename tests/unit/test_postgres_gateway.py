"""
Tests for the SQL the postgres gateway issues, against a mocked connection.
"""
import pytest
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from app.models.detention_event import DetentionEvent, DetentionEventStatus
from app.models.invoice import Invoice, InvoiceStatus
from app.persistence.postgres import PostgresGateway, _set_clause
from app.services.detention_events_service import DetentionEventsService
from tests.utils.factories import BASE_TIME, DetentionEventFactory


def mock_connection(conn):
    @asynccontextmanager
    async def _get_db_connection(use_transaction: bool = True):
        yield conn
    return _get_db_connection


class TestSetClause:

    def test_numbers_placeholders_from_offset(self):
        assignments, values = _set_clause(
            Invoice, {"status": InvoiceStatus.PAID, "pdf_url": "https://files.test/inv.pdf"}, 3
        )

        assert assignments == "status = $3, pdf_url = $4"
        assert values == ["paid", "https://files.test/inv.pdf"]

    def test_rejects_unknown_column(self):
        with pytest.raises(ValueError):
            _set_clause(DetentionEvent, {"status; DROP TABLE x": "x"}, 3)


class TestPostgresGateway:

    @pytest.mark.asyncio
    async def test_event_transition_assigns_each_column_once(self):
        event = DetentionEventFactory.create(status=DetentionEventStatus.COMPLETED)
        conn = AsyncMock()
        conn.fetchrow.return_value = {**event.model_dump(), "status": "invoiced"}
        events = DetentionEventsService(PostgresGateway(), Decimal("75.00"), 120)

        with patch("app.persistence.postgres.get_db_connection", mock_connection(conn)):
            updated = await events.mark_invoiced(event, now=BASE_TIME)

        assert updated.status == DetentionEventStatus.INVOICED
        query, *params = conn.fetchrow.call_args.args
        set_clause = query.split("SET")[1].split("WHERE")[0]
        assert set_clause.count("updated_at") == 1
        assert "WHERE id = $1 AND status = $2" in query
        assert params == [event.id, "completed", BASE_TIME, "invoiced"]

    @pytest.mark.asyncio
    async def test_update_event_returns_none_when_status_moved(self):
        conn = AsyncMock()
        conn.fetchrow.return_value = None

        with patch("app.persistence.postgres.get_db_connection", mock_connection(conn)):
            result = await PostgresGateway().update_event(
                "evt-1", DetentionEventStatus.COMPLETED, {"status": DetentionEventStatus.INVOICED}
            )

        assert result is None

    @pytest.mark.asyncio
    async def test_delete_invoice_reports_affected_row(self):
        conn = AsyncMock()
        conn.execute.side_effect = ["DELETE 1", "DELETE 0"]

        with patch("app.persistence.postgres.get_db_connection", mock_connection(conn)):
            gateway = PostgresGateway()
            assert await gateway.delete_invoice("inv-1", InvoiceStatus.DRAFT) is True
            assert await gateway.delete_invoice("inv-1", InvoiceStatus.DRAFT) is False

    @pytest.mark.asyncio
    async def test_list_events_filters_by_facility(self):
        conn = AsyncMock()
        conn.fetch.return_value = []

        with patch("app.persistence.postgres.get_db_connection", mock_connection(conn)):
            await PostgresGateway().list_events(user_id="user-1", facility_id="dock-7", limit=10)

        query, *params = conn.fetch.call_args.args
        assert "user_id = $1 AND facility_id = $2" in query
        assert query.endswith("LIMIT $3")
        assert params == ["user-1", "dock-7", 10]
