import os
import threading

import pytest

from checkin_kiosk.app import create_app, get_kiosk
from checkin_kiosk.exceptions import ScannerDeviceException
from checkin_kiosk.repositories import RepositoryFactory, load_fixture
from checkin_kiosk.scanner import Scanner
from checkin_kiosk.services import CheckInService, EventService, KioskSession

FIXTURE_PATH = os.path.join(os.path.dirname(__file__), 'fixtures', 'registrations.json')


class FakeScanner(Scanner):
    """Scanner driven by the test: ``emit`` plays the part of the camera"""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.on_decode = None
        self.start_calls = 0
        self.stop_calls = 0

    def start(self, on_decode):
        self.start_calls += 1
        if self.fail_with:
            raise ScannerDeviceException(self.fail_with)
        self.on_decode = on_decode

    def stop(self):
        self.stop_calls += 1
        self.on_decode = None

    @property
    def is_active(self):
        return self.on_decode is not None

    def emit(self, text):
        self.on_decode(text)


class BlockingSearch:
    """Wraps a registration repository so a search waits for ``release``"""

    def __init__(self, inner):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def search(self, event_id, text, limit=1):
        self.calls += 1
        self.entered.set()
        assert self.release.wait(5), "search was never released"
        return self.inner.search(event_id, text, limit=limit)


@pytest.fixture
def store():
    return load_fixture(FIXTURE_PATH)


@pytest.fixture
def repositories(store):
    return RepositoryFactory.create_memory_repositories(store)


@pytest.fixture
def fake_scanner():
    return FakeScanner()


@pytest.fixture
def checkin_service(repositories):
    return CheckInService(repositories.registrations, repositories.attendance)


@pytest.fixture
def session(repositories, checkin_service, fake_scanner):
    kiosk_session = KioskSession(EventService(repositories.events), checkin_service, scanner=fake_scanner)
    yield kiosk_session
    kiosk_session.close()


@pytest.fixture
def app(repositories, fake_scanner):
    flask_app = create_app('testing', repositories=repositories, scanner=fake_scanner)
    yield flask_app
    get_kiosk(flask_app).shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def kiosk(app):
    return get_kiosk(app)
