import json

import httpx
import pytest

from checkin_kiosk.api_client import ApiClient
from checkin_kiosk.exceptions import (
    AlreadyCheckedInException,
    ApiTimeoutException,
    CheckInFailedException,
    DataValidationException
)
from checkin_kiosk.models import CheckInMethod, CheckInRequest, RegistrationStatus
from checkin_kiosk.repositories import (
    ApiAttendanceRepository,
    ApiEventRepository,
    ApiRegistrationRepository,
    InMemoryStore,
    RepositoryFactory,
    load_fixture
)

from conftest import FIXTURE_PATH


def api_client(handler):
    return ApiClient(base_url="http://backend.test/api", retries=1, backoff=0,
                     transport=httpx.MockTransport(handler))


def test_api_event_repository_reads_nested_envelope():
    def handler(request):
        assert request.url.path == "/api/events"
        assert request.url.params["isPublished"] == "true"
        assert request.url.params["limit"] == "50"
        return httpx.Response(200, json={"data": {"data": [
            {"id": "evt-1", "title": "Annual Conference", "isPublished": True}
        ]}})

    events = ApiEventRepository(api_client(handler)).list_events()
    assert [e.title for e in events] == ["Annual Conference"]


def test_api_registration_repository_search():
    def handler(request):
        assert request.url.path == "/api/registrations"
        assert dict(request.url.params) == {"eventId": "evt-1", "search": "FCS/24/1001", "limit": "1"}
        return httpx.Response(200, json={"data": [
            {"id": "reg-1", "eventId": "evt-1", "status": "CONFIRMED",
             "member": {"firstName": "Jane", "lastName": "Doe", "fcsCode": "FCS/24/1001"}}
        ]})

    results = ApiRegistrationRepository(api_client(handler)).search("evt-1", "FCS/24/1001", limit=1)
    assert len(results) == 1
    assert results[0].member.full_name == "Jane Doe"


def test_api_registration_repository_trims_to_limit():
    def handler(request):
        return httpx.Response(200, json=[
            {"id": "reg-1", "status": "CONFIRMED"},
            {"id": "reg-2", "status": "CONFIRMED"},
        ])

    assert len(ApiRegistrationRepository(api_client(handler)).search("evt-1", "x", limit=1)) == 1


def test_api_attendance_repository_posts_payload():
    seen = {}

    def handler(request):
        seen['method'] = request.method
        seen['body'] = json.loads(request.content)
        return httpx.Response(201, json={"data": {
            "id": "att-1", "registrationId": "reg-1", "eventId": "evt-1",
            "checkInMethod": "QR", "checkInTime": "2024-08-01T09:00:00Z",
            "member": {"firstName": "Jane", "lastName": "Doe", "fcsCode": "FCS/24/1001"},
            "center": {"id": "ctr-1", "centerName": "Lagos Centre"}
        }})

    request = CheckInRequest("evt-1", "reg-1", CheckInMethod.QR, center_id="ctr-1")
    record = ApiAttendanceRepository(api_client(handler)).check_in(request)

    assert seen['method'] == "POST"
    assert seen['body'] == {"eventId": "evt-1", "registrationId": "reg-1",
                            "checkInMethod": "QR", "centerId": "ctr-1"}
    assert record.id == "att-1"
    assert record.center_name == "Lagos Centre"
    assert record.member.fcs_code == "FCS/24/1001"


def test_api_attendance_repository_fills_missing_fields():
    def handler(request):
        return httpx.Response(200, json={"success": True})

    request = CheckInRequest("evt-1", "reg-1", CheckInMethod.MANUAL)
    record = ApiAttendanceRepository(api_client(handler)).check_in(request)
    assert record.registration_id == "reg-1"
    assert record.event_id == "evt-1"
    assert record.check_in_method == CheckInMethod.MANUAL


def test_api_attendance_rejection_becomes_check_in_failure():
    def handler(request):
        return httpx.Response(409, json={"error": {"message": "Member already checked in", "code": "DUPLICATE"}})

    with pytest.raises(CheckInFailedException) as excinfo:
        ApiAttendanceRepository(api_client(handler)).check_in(
            CheckInRequest("evt-1", "reg-1", CheckInMethod.MANUAL)
        )
    assert excinfo.value.message == "Member already checked in"


def test_api_attendance_timeout_is_kept():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ApiTimeoutException):
        ApiAttendanceRepository(api_client(handler)).check_in(
            CheckInRequest("evt-1", "reg-1", CheckInMethod.MANUAL)
        )


def test_memory_search_matches_code_and_name(repositories):
    assert [r.id for r in repositories.registrations.search("evt-1", "fcs/24/1001", limit=5)] == ["reg-1"]
    assert len(repositories.registrations.search("evt-1", "ade", limit=5)) == 2
    assert repositories.registrations.search("evt-1", "", limit=5) == []


def test_memory_events_hide_unpublished(repositories):
    assert [e.id for e in repositories.events.list_events()] == ["evt-1", "evt-2"]
    assert len(repositories.events.list_events(published=False)) == 3


def test_memory_check_in_once(repositories, store):
    request = CheckInRequest("evt-1", "reg-1", CheckInMethod.MANUAL, center_id="ctr-1")
    record = repositories.attendance.check_in(request)
    assert record.center_name == "Lagos Centre"
    assert store.registrations["reg-1"].status == RegistrationStatus.CHECKED_IN

    with pytest.raises(AlreadyCheckedInException) as excinfo:
        repositories.attendance.check_in(request)
    assert excinfo.value.message == "Member already checked in"


def test_memory_check_in_wrong_event(repositories):
    with pytest.raises(CheckInFailedException):
        repositories.attendance.check_in(CheckInRequest("evt-2", "reg-1", CheckInMethod.MANUAL))


def test_memory_store_clear(store):
    store.clear()
    assert store.events == []
    assert store.registrations == {}


def test_load_fixture_missing_file(tmp_path):
    with pytest.raises(DataValidationException):
        load_fixture(str(tmp_path / "missing.json"))


def test_load_fixture_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(DataValidationException):
        load_fixture(str(path))


def test_load_fixture_rejects_unknown_status(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"registrations": [{"id": "r", "status": "LOST"}]}), encoding="utf-8")
    with pytest.raises(DataValidationException):
        load_fixture(str(path))


def test_factory_memory_from_fixture():
    repositories = RepositoryFactory.create_repositories('memory', fixture_path=FIXTURE_PATH)
    assert isinstance(repositories.store, InMemoryStore)
    assert len(repositories.store.registrations) == 5


def test_factory_api_requires_client():
    with pytest.raises(ValueError):
        RepositoryFactory.create_repositories('api')


def test_factory_unknown_type():
    with pytest.raises(ValueError):
        RepositoryFactory.create_repositories('sheets')


def test_factory_api():
    client = api_client(lambda request: httpx.Response(200, json=[]))
    repositories = RepositoryFactory.create_repositories('API', client=client)
    assert repositories.client is client
    repositories.close()
