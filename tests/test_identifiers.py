"""Tests for change request id formatting and allocation."""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest
from sqlalchemy import delete

from crflow_core import models
from crflow_core.database import create_db_engine, create_session_factory, init_db
from crflow_core.identifiers import format_cr_id, is_cr_id, parse_cr_id, prefix_for
from crflow_core.models import Role
from crflow_core.state_machine import status_patch
from crflow_core.store import SqlRecordStore

OCTOBER = datetime(2026, 10, 19, 9, 0, 0)
NOVEMBER = datetime(2026, 11, 1, 0, 0, 0)


def create(store, owner, now=OCTOBER):
    fields = {**status_patch(models.CRStatus.DRAFT), "title": "Upgrade payroll export"}
    return store.create_cr(owner.id, {"title": "Upgrade payroll export"}, fields, now)


class TestFormat:
    """Test the CR-YYYY-MM-NNNNNN format."""

    def test_format_and_parse(self):
        cr_id = format_cr_id(prefix_for(OCTOBER), 42)

        assert cr_id == "CR-2026-10-000042"
        parsed = parse_cr_id(cr_id)
        assert (parsed.year, parsed.month, parsed.sequence) == (2026, 10, 42)
        assert parsed.prefix == "CR-2026-10"

    def test_sequence_range(self):
        assert format_cr_id("CR-2026-10", 999999) == "CR-2026-10-999999"
        with pytest.raises(ValueError):
            format_cr_id("CR-2026-10", 1000000)
        with pytest.raises(ValueError):
            format_cr_id("CR-2026-10", 0)

    @pytest.mark.parametrize("value", ["CR-2026-13-000001", "CR-26-10-000001", "cr-2026-10-000001", ""])
    def test_malformed_ids(self, value):
        assert not is_cr_id(value)


class TestAllocation:
    """Test id allocation through the store."""

    def test_sequence_restarts_each_month(self, store, users):
        assert create(store, users.requester).id == "CR-2026-10-000001"
        assert create(store, users.requester).id == "CR-2026-10-000002"
        assert create(store, users.requester, NOVEMBER).id == "CR-2026-11-000001"
        assert create(store, users.requester).id == "CR-2026-10-000003"

    def test_counter_seeded_from_existing_ids(self, store, users):
        create(store, users.requester)
        create(store, users.requester)

        session = store._session_factory()
        session.execute(delete(models.CRSequence))
        session.commit()
        session.close()

        assert create(store, users.requester).id == "CR-2026-10-000003"

    def test_concurrent_creation_yields_unique_ids(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'crflow.db'}")
        init_db(engine)
        store = SqlRecordStore(create_session_factory(engine))
        owner = store.create_user("alice@example.com", "Alice Doe", Role.USER, "Finance")

        def create_batch(_):
            return [create(store, owner).id for _ in range(5)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            ids = [cr_id for batch in pool.map(create_batch, range(4)) for cr_id in batch]

        engine.dispose()
        assert len(ids) == 20
        assert sorted(ids) == [format_cr_id("CR-2026-10", n) for n in range(1, 21)]
