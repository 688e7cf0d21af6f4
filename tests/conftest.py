"""Shared fixtures: SQLite-backed store, recording collaborators, seeded users."""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from crflow_core.config import Settings
from crflow_core.database import create_db_engine, create_session_factory, init_db
from crflow_core.lifecycle import ChangeRequestEngine
from crflow_core.models import Role
from crflow_core.store import SqlRecordStore

# Long enough for rejections and revision requests
REASON = "Please add the cost estimate and the rollout plan for every affected branch office."


def valid_form(**overrides) -> dict:
    form = {
        "targetDate": "2026-12-01",
        "title": "Upgrade payroll export",
        "requester1": "Alice Doe",
        "requester2": "Bob Manager",
        "businessArea": "Finance",
        "categoryImpact": "Medium",
        "impactDescription": "Payroll exports fail every month end",
        "background": "The current export job times out on large batches.",
        "objective": "Reliable monthly payroll export",
        "serviceExplanation": "Rewrite the export as a batched job",
        "servicesNeeded": "Backend development",
    }
    form.update(overrides)
    return form


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = datetime(2026, 10, 19, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def _record(self, kind, target, payload):
        if self.fail:
            raise RuntimeError("notification transport down")
        self.sent.append((kind, target, payload))

    def notify_user(self, user_id, payload):
        self._record("user", user_id, payload)

    def notify_role(self, role, payload):
        self._record("role", role, payload)

    def notify_division_managers(self, division, payload):
        self._record("division", division, payload)

    def types(self) -> list[str]:
        return [payload.type for _, _, payload in self.sent]

    def sent_to(self, kind, target) -> list:
        return [payload for k, t, payload in self.sent if k == kind and t == target]


class FakeDocumentGenerator:
    def __init__(self):
        self.calls = []
        self.fail = False

    def generate_approval_document(self, cr_id: str) -> str:
        self.calls.append(cr_id)
        if self.fail:
            raise RuntimeError("renderer unavailable")
        return f"approvals/{cr_id}.pdf"


class InMemoryFileStorage:
    def __init__(self):
        self.blobs = {}

    def upload(self, name: str, data: bytes, mime_type: str) -> str:
        self.blobs[name] = data
        return name

    def download(self, path: str) -> bytes:
        return self.blobs[path]

    def delete(self, path: str) -> None:
        self.blobs.pop(path, None)


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", log_level="DEBUG")


@pytest.fixture
def store(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield SqlRecordStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def users(store):
    """One user per role, plus a second division for scoping checks."""
    return SimpleNamespace(
        requester=store.create_user("alice@example.com", "Alice Doe", Role.USER, "Finance"),
        colleague=store.create_user("carol@example.com", "Carol Finch", Role.USER, "Finance"),
        outsider=store.create_user("harry@example.com", "Harry Reed", Role.USER, "HR"),
        manager=store.create_user("bob@example.com", "Bob Manager", Role.MANAGER, "Finance"),
        hr_manager=store.create_user("hana@example.com", "Hana Manager", Role.MANAGER, "HR"),
        vp=store.create_user("victor@example.com", "Victor VP", Role.VP, None),
        it_manager=store.create_user("ivan@example.com", "Ivan IT", Role.MANAGER_IT, None),
        dev1=store.create_user("dana@example.com", "Dana Dev", Role.DEV, None),
        dev2=store.create_user("eli@example.com", "Eli Dev", Role.DEV, None),
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def generator():
    return FakeDocumentGenerator()


@pytest.fixture
def storage():
    return InMemoryFileStorage()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def engine(store, notifier, generator, storage, settings, clock):
    return ChangeRequestEngine(
        store=store,
        notifier=notifier,
        document_generator=generator,
        file_storage=storage,
        settings=settings,
        clock=clock,
    )


class Workflow:
    """Drives CRs to a given status through the public engine API."""

    def __init__(self, engine, users):
        self.engine = engine
        self.users = users

    def draft(self, owner=None, **form):
        return self.engine.create(owner or self.users.requester, valid_form(**form))

    def pending_manager(self, owner=None, **form):
        owner = owner or self.users.requester
        cr = self.draft(owner, **form)
        return self.engine.submit(cr.id, owner)

    def pending_vp(self, owner=None, **form):
        cr = self.pending_manager(owner, **form)
        manager = self.users.manager if cr.owner_division == "Finance" else self.users.hr_manager
        return self.engine.approve(cr.id, manager)

    def approved(self, owner=None, **form):
        cr = self.pending_vp(owner, **form)
        return self.engine.approve(cr.id, self.users.vp)

    def assigned(self, developers=None, owner=None, **form):
        cr = self.approved(owner, **form)
        developers = developers or [self.users.dev1]
        return self.engine.assign_developers(cr.id, self.users.it_manager, [d.id for d in developers])


@pytest.fixture
def workflow(engine, users):
    return Workflow(engine, users)
