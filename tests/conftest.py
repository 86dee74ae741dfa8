from datetime import date, datetime

import pytest

from app.auth.verify import auth_dependency
from tests.fakes import DRIVER_EMAIL, LONDON, FakeRecordStore, RecordingMailer, make_item


@pytest.fixture
def record_store():
    return FakeRecordStore([make_item()])


@pytest.fixture
def recording_mailer():
    return RecordingMailer()


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 5, 15, 0, tzinfo=LONDON)


@pytest.fixture
def today():
    return date(2026, 3, 5)


@pytest.fixture
def auth_override():
    def _override():
        return {"email": DRIVER_EMAIL}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply
