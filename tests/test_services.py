import threading

import pytest

from checkin_kiosk.exceptions import (
    AmbiguousRegistrationException,
    ApiRequestException,
    ApiTimeoutException,
    CheckInFailedException,
    OperationCancelledException,
    RegistrationNotFoundException
)
from checkin_kiosk.models import CheckInMethod, Member, Registration, RegistrationStatus
from checkin_kiosk.repositories import EventRepository, InMemoryStore, RegistrationRepository, RepositoryFactory
from checkin_kiosk.scanner import DecodeDebouncer
from checkin_kiosk.services import (
    CancellationToken,
    CheckInService,
    EventService,
    KioskSession
)
from checkin_kiosk.state import KioskPhase

from conftest import BlockingSearch, FakeScanner


class FailingEventRepository(EventRepository):
    def list_events(self, published=True, limit=50):
        raise ApiRequestException("HTTP 502: Bad Gateway", status_code=502)


class RejectingAttendance:
    def __init__(self, reason):
        self.reason = reason

    def check_in(self, request):
        raise CheckInFailedException(request.registration_id, self.reason)


class ExplodingAttendance:
    def check_in(self, request):
        raise RuntimeError("boom")


class TimingOutSearch(RegistrationRepository):
    def search(self, event_id, text, limit=1):
        raise ApiTimeoutException("GET", "http://backend.test/api/registrations")


class TimingOutAttendance:
    def check_in(self, request):
        raise ApiTimeoutException("POST", "http://backend.test/api/attendance/check-in")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# CheckInService

def test_find_registration_single_match(checkin_service):
    registration = checkin_service.find_registration("evt-1", "FCS/24/1001")
    assert registration.id == "reg-1"


def test_find_registration_not_found(checkin_service):
    with pytest.raises(RegistrationNotFoundException) as excinfo:
        checkin_service.find_registration("evt-1", "XXXX")
    assert excinfo.value.message == "Registration not found"


def test_find_registration_is_scoped_to_event(checkin_service):
    with pytest.raises(RegistrationNotFoundException):
        checkin_service.find_registration("evt-2", "FCS/24/1001")


def test_find_registration_ambiguous(checkin_service):
    with pytest.raises(AmbiguousRegistrationException) as excinfo:
        checkin_service.find_registration("evt-1", "Ade")
    assert sorted(r.id for r in excinfo.value.candidates) == ["reg-3", "reg-4"]


def test_prefix_of_several_codes_is_ambiguous(checkin_service):
    with pytest.raises(AmbiguousRegistrationException):
        checkin_service.find_registration("evt-1", "FCS/24/100")


def test_find_registration_prefers_single_exact_code():
    store = InMemoryStore(registrations=[
        Registration("reg-a", "evt-1", RegistrationStatus.CONFIRMED, Member(fcs_code="FCS/24/77")),
        Registration("reg-b", "evt-1", RegistrationStatus.CONFIRMED, Member(fcs_code="FCS/24/770")),
    ])
    repositories = RepositoryFactory.create_memory_repositories(store)
    service = CheckInService(repositories.registrations, repositories.attendance)
    assert service.find_registration("evt-1", "fcs/24/77").id == "reg-a"


def test_first_match_policy_requests_one_result(repositories, store):
    service = CheckInService(repositories.registrations, repositories.attendance, match_policy='first')
    registration = service.find_registration("evt-1", "Ade")
    assert registration.id in ("reg-3", "reg-4")
    assert store.searches[-1] == ("evt-1", "Ade", 1)


def test_unknown_match_policy_is_rejected(repositories):
    with pytest.raises(ValueError):
        CheckInService(repositories.registrations, repositories.attendance, match_policy='best')


def test_process_checks_in_with_center(checkin_service, store):
    result = checkin_service.process("evt-1", "FCS/24/1001", CheckInMethod.MANUAL)
    assert not result.already_checked_in
    assert result.attendance.registration_id == "reg-1"
    assert store.check_ins[0].to_payload() == {
        "eventId": "evt-1",
        "registrationId": "reg-1",
        "checkInMethod": "MANUAL",
        "centerId": "ctr-1",
    }


def test_process_duplicate_makes_no_check_in_call(checkin_service, store):
    result = checkin_service.process("evt-1", "FCS/24/1002", CheckInMethod.QR)
    assert result.already_checked_in
    assert store.check_ins == []


def test_check_in_honours_cancellation(checkin_service, store):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledException):
        checkin_service.process("evt-1", "FCS/24/1001", CheckInMethod.MANUAL, token)
    assert store.check_ins == []


# EventService

def test_list_published_events(repositories):
    events = EventService(repositories.events).list_published_events()
    assert [e.title for e in events] == ["Annual Conference", "Youth Camp"]


def test_event_limit(repositories):
    assert len(EventService(repositories.events, limit=1).list_published_events()) == 1


# KioskSession

def test_session_starts_with_input_disabled(session):
    assert session.state.event_id is None
    assert not session.state.accepts_input
    assert session.submit_manual("FCS/24/1001") is None


def test_load_events_failure_notifies(checkin_service):
    session = KioskSession(EventService(FailingEventRepository()), checkin_service)
    assert session.load_events() == []
    assert session.drain_notifications() == [('error', "Failed to load events")]
    assert session.drain_notifications() == []


def test_scenario_successful_check_in(session, store):
    session.select_event("evt-1")
    state = session.submit_manual("FCS/24/1001")

    assert state.phase == KioskPhase.SUCCESS
    assert state.result.display_name == "Jane Doe"
    assert state.result.display_code == "FCS/24/1001"
    assert state.result.display_center == "Lagos Centre"
    assert state.input_buffer == ""
    assert store.registrations["reg-1"].status == RegistrationStatus.CHECKED_IN
    assert ('success', "Checked In Successfully!") in session.drain_notifications()


def test_scenario_duplicate(session, store):
    session.select_event("evt-1")
    state = session.submit_manual("FCS/24/1002")
    assert state.phase == KioskPhase.DUPLICATE
    assert state.result.already_checked_in
    assert state.result.display_name == "John Smith"
    assert state.result.display_center == "Ibadan Centre"
    assert store.check_ins == []


def test_repeated_scan_is_idempotent(session, store):
    session.select_event("evt-1")
    assert session.submit_manual("FCS/24/1001").phase == KioskPhase.SUCCESS
    assert session.submit_manual("FCS/24/1001").phase == KioskPhase.DUPLICATE
    assert len(store.check_ins) == 1


def test_scenario_not_found(session, store):
    session.select_event("evt-1")
    state = session.submit_manual("XXXX")
    assert state.phase == KioskPhase.ERROR
    assert state.error_message == "Registration not found"
    assert store.check_ins == []


def test_manual_method_follows_kiosk_mode(session, store):
    session.select_event("evt-1")
    session.set_kiosk_mode(True)
    session.submit_manual("FCS/24/1001")
    assert store.check_ins[0].check_in_method == CheckInMethod.KIOSK


def test_remote_failure_keeps_server_message(repositories):
    service = CheckInService(repositories.registrations, RejectingAttendance("Event has not started"))
    session = KioskSession(EventService(repositories.events), service)
    session.select_event("evt-1")
    state = session.submit_manual("FCS/24/1001")
    assert state.phase == KioskPhase.ERROR
    assert state.error_message == "Event has not started"


def test_unexpected_error_becomes_generic_message(repositories):
    service = CheckInService(repositories.registrations, ExplodingAttendance())
    session = KioskSession(EventService(repositories.events), service)
    session.select_event("evt-1")
    state = session.submit_manual("FCS/24/1001")
    assert state.phase == KioskPhase.ERROR
    assert state.error_message == "Error processing check-in"


def test_toast_error_display_notifies(repositories, checkin_service):
    session = KioskSession(EventService(repositories.events), checkin_service, error_display='toast')
    session.select_event("evt-1")
    session.submit_manual("XXXX")
    assert ('error', "Registration not found") in session.drain_notifications()


def test_ambiguous_lookup_and_choice(session, store):
    session.select_event("evt-1")
    state = session.submit_manual("Ade")
    assert state.phase == KioskPhase.AMBIGUOUS
    assert store.check_ins == []

    state = session.choose_candidate("reg-4")
    assert state.phase == KioskPhase.SUCCESS
    assert state.result.display_name == "Ade Okafor"
    assert [c.registration_id for c in store.check_ins] == ["reg-4"]


def test_choose_candidate_without_ambiguity(session):
    session.select_event("evt-1")
    assert session.choose_candidate("reg-1") is None


def test_select_event_resets_state(session):
    session.select_event("evt-1")
    session.update_input("FCS/24")
    session.submit_manual("XXXX")
    state = session.select_event("evt-2")
    assert state.phase == KioskPhase.WAITING
    assert state.error_message == ""
    assert state.result is None
    assert state.input_buffer == ""


def test_single_flight(repositories, store):
    blocking = BlockingSearch(repositories.registrations)
    service = CheckInService(blocking, repositories.attendance)
    session = KioskSession(EventService(repositories.events), service)
    session.select_event("evt-1")

    results = []
    worker = threading.Thread(target=lambda: results.append(session.submit_manual("FCS/24/1001")))
    worker.start()
    assert blocking.entered.wait(5)

    assert session.state.processing
    assert session.handle_check_in("FCS/24/1002", CheckInMethod.QR) is None

    blocking.release.set()
    worker.join(5)
    assert blocking.calls == 1
    assert results[0].phase == KioskPhase.SUCCESS
    assert len(store.check_ins) == 1


def test_switching_event_cancels_run_in_flight(repositories, store):
    blocking = BlockingSearch(repositories.registrations)
    service = CheckInService(blocking, repositories.attendance)
    session = KioskSession(EventService(repositories.events), service)
    session.select_event("evt-1")

    worker = threading.Thread(target=session.submit_manual, args=("FCS/24/1001",))
    worker.start()
    assert blocking.entered.wait(5)

    session.select_event("evt-2")
    blocking.release.set()
    worker.join(5)

    assert store.check_ins == []
    assert session.state.event_id == "evt-2"
    assert session.state.phase == KioskPhase.WAITING


def test_camera_decode_uses_qr_method(session, fake_scanner, store):
    session.select_event("evt-1")
    assert session.start_camera()
    assert session.state.camera_active

    fake_scanner.emit("FCS/24/1001")
    assert session.state.phase == KioskPhase.SUCCESS
    assert store.check_ins[0].check_in_method == CheckInMethod.QR


def test_camera_needs_an_event(session, fake_scanner):
    assert not session.start_camera()
    assert fake_scanner.start_calls == 0


def test_camera_failure_notifies_and_barcode_still_works(repositories, checkin_service):
    scanner = FakeScanner(fail_with="permission denied")
    session = KioskSession(EventService(repositories.events), checkin_service, scanner=scanner)
    session.select_event("evt-1")

    assert not session.start_camera()
    assert not session.state.camera_active
    assert ('error', "Failed to start camera. Please check permissions.") in session.drain_notifications()
    assert session.submit_manual("FCS/24/1001").phase == KioskPhase.SUCCESS


def test_leaving_camera_tab_releases_camera(session, fake_scanner):
    session.select_event("evt-1")
    session.switch_tab("camera")
    session.start_camera()
    assert fake_scanner.is_active

    session.switch_tab("barcode")
    assert not fake_scanner.is_active
    assert not session.state.camera_active
    assert session.active_tab == "barcode"


def test_unknown_tab(session):
    with pytest.raises(ValueError):
        session.switch_tab("nfc")


def test_close_releases_camera(session, fake_scanner):
    session.select_event("evt-1")
    session.start_camera()
    session.close()
    assert not fake_scanner.is_active


def test_changing_event_keeps_camera_running(session, fake_scanner, store):
    session.select_event("evt-1")
    session.start_camera()
    session.select_event("evt-2")
    assert fake_scanner.is_active
    assert session.state.camera_active

    fake_scanner.emit("FCS/24/3001")
    assert session.state.phase == KioskPhase.SUCCESS
    assert store.check_ins[0].event_id == "evt-2"


def test_deselecting_event_stops_camera(session, fake_scanner):
    session.select_event("evt-1")
    session.start_camera()
    session.select_event("")
    assert not fake_scanner.is_active
    assert not session.state.camera_active


@pytest.mark.parametrize("registrations, attendance", [
    ("timeout", None),
    (None, "timeout"),
])
def test_backend_timeout_leaves_kiosk_usable(repositories, store, registrations, attendance):
    service = CheckInService(
        TimingOutSearch() if registrations else repositories.registrations,
        TimingOutAttendance() if attendance else repositories.attendance
    )
    session = KioskSession(EventService(repositories.events), service)
    session.select_event("evt-1")

    state = session.submit_manual("FCS/24/1001")
    assert state.phase == KioskPhase.ERROR
    assert state.error_message == "Request timed out"
    assert state.accepts_input
    assert not state.processing
    assert store.check_ins == []


def test_camera_reads_of_one_badge_are_debounced(repositories, checkin_service, store):
    clock = FakeClock()
    session = KioskSession(EventService(repositories.events), checkin_service,
                           scan_debouncer=DecodeDebouncer(3.0, clock=clock))
    session.select_event("evt-1")

    assert session.submit_scan("FCS/24/1001").phase == KioskPhase.SUCCESS
    clock.now += 0.1
    assert session.submit_scan("FCS/24/1001") is None
    assert session.state.phase == KioskPhase.SUCCESS

    clock.now += 5
    assert session.submit_scan("FCS/24/1001").phase == KioskPhase.DUPLICATE
    assert len(store.check_ins) == 1
    assert store.check_ins[0].check_in_method == CheckInMethod.QR


def test_selecting_event_resets_scan_debounce(repositories, checkin_service):
    session = KioskSession(EventService(repositories.events), checkin_service,
                           scan_debouncer=DecodeDebouncer(3.0, clock=FakeClock()))
    session.select_event("evt-1")
    session.submit_scan("FCS/24/1002")
    session.select_event("evt-1")
    assert session.submit_scan("FCS/24/1002").phase == KioskPhase.DUPLICATE


def test_submit_manual_sends_typed_input(session, store):
    session.select_event("evt-1")
    assert session.update_input("FCS/24/1001").input_buffer == "FCS/24/1001"
    state = session.submit_manual()
    assert state.phase == KioskPhase.SUCCESS
    assert state.input_buffer == ""
    assert store.check_ins[0].registration_id == "reg-1"


def test_blank_submission_clears_input(session):
    session.select_event("evt-1")
    assert session.submit_manual("   ") is None
    assert session.state.input_buffer == ""
    assert session.state.phase == KioskPhase.WAITING


def test_notes_reach_the_check_in_request(session, store):
    session.select_event("evt-1")
    session.submit_manual("FCS/24/1001", notes="Arrived late")
    assert store.check_ins[0].to_payload()["notes"] == "Arrived late"
