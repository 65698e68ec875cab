"""
Business Logic Services for the Check-in Kiosk

This module contains the services behind the kiosk screen:

- EventService loads the published events for the event selector
- CheckInService runs the lookup-and-check-in pipeline for one code
- KioskSession owns the state machine, the camera scanner and the
  single-flight guard, and turns every failure into kiosk state
"""

import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple

from .exceptions import (
    AlreadyCheckedInException,
    AmbiguousRegistrationException,
    KioskException,
    OperationCancelledException,
    RegistrationNotFoundException,
    ScannerDeviceException
)
from .models import CheckInMethod, CheckInRequest, Event, Registration, ScanResult
from .repositories import (
    AttendanceRepository,
    EventRepository,
    RegistrationRepository
)
from .scanner import DecodeDebouncer, NullScanner, Scanner
from .state import (
    AlreadyCheckedIn,
    CheckInFailed,
    CheckInSucceeded,
    KioskPhase,
    KioskState,
    LookupAmbiguous,
    LookupNotFound,
    ResolveCandidate,
    SelectEvent,
    SetCameraActive,
    SetKioskMode,
    SubmitCode,
    UpdateInput,
    reduce
)

MATCH_FIRST = 'first'
MATCH_DISAMBIGUATE = 'disambiguate'

CAMERA_TAB = 'camera'
BARCODE_TAB = 'barcode'


class CancellationToken:
    """Cooperative cancellation flag shared by one pipeline run"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str) -> None:
        if self.cancelled:
            raise OperationCancelledException(operation)


class EventService:
    """
    Loads the events an operator can check people in for

    Events are fetched fresh every time; nothing is cached between
    calls.
    """

    def __init__(self, event_repository: EventRepository, limit: int = 50):
        """
        Initialize event service

        Args:
            event_repository: Repository for events
            limit: Maximum number of events to fetch
        """
        self.event_repository = event_repository
        self.limit = limit
        self.logger = logging.getLogger('event_service')

    def list_published_events(self) -> List[Event]:
        """
        Get published events for the event selector

        Returns:
            List of published events

        Raises:
            KioskException: If the events cannot be loaded
        """
        events = self.event_repository.list_events(published=True, limit=self.limit)
        self.logger.debug(f"Loaded {len(events)} published events")
        return events


class CheckInService:
    """
    Resolves a code to a registration and checks it in

    The two backend calls run one after the other: the check-in needs
    the registration found by the search. The service never decides
    whether a check-in is allowed; it only reports what the server says.
    """

    def __init__(self, registration_repository: RegistrationRepository,
                 attendance_repository: AttendanceRepository,
                 match_policy: str = MATCH_DISAMBIGUATE, match_limit: int = 5):
        """
        Initialize check-in service

        Args:
            registration_repository: Repository used for the search
            attendance_repository: Repository used for the check-in
            match_policy: 'disambiguate' or 'first'
            match_limit: Search size used by the 'disambiguate' policy
        """
        if match_policy not in (MATCH_FIRST, MATCH_DISAMBIGUATE):
            raise ValueError(f"Unsupported match policy: {match_policy}")
        self.registration_repository = registration_repository
        self.attendance_repository = attendance_repository
        self.match_policy = match_policy
        self.match_limit = max(2, match_limit)
        self.logger = logging.getLogger('checkin_service')

    def find_registration(self, event_id: str, code: str) -> Registration:
        """
        Resolve a code to exactly one registration of the event

        With the 'first' policy only one result is requested and used.
        With 'disambiguate' a single result wins, then a single result
        whose FCS code equals the code; anything else is ambiguous.

        Args:
            event_id: Selected event
            code: Scanned or typed code

        Returns:
            The matching registration

        Raises:
            RegistrationNotFoundException: If nothing matches
            AmbiguousRegistrationException: If several registrations match
        """
        limit = 1 if self.match_policy == MATCH_FIRST else self.match_limit
        matches = self.registration_repository.search(event_id, code, limit=limit)

        if not matches:
            raise RegistrationNotFoundException(code, event_id)
        if len(matches) == 1 or self.match_policy == MATCH_FIRST:
            return matches[0]

        exact = [registration for registration in matches if registration.matches_code(code)]
        if len(exact) == 1:
            return exact[0]
        raise AmbiguousRegistrationException(code, exact or matches)

    def check_in(self, event_id: str, registration: Registration, method: CheckInMethod,
                 token: Optional[CancellationToken] = None, notes: Optional[str] = None) -> ScanResult:
        """
        Check in a registration unless it is already checked in

        Args:
            event_id: Selected event
            registration: Registration found by the search
            method: How the code was captured
            token: Cancellation token of the current run
            notes: Optional operator note stored with the attendance record

        Returns:
            ScanResult; ``already_checked_in`` is set when no call was made

        Raises:
            OperationCancelledException: If the run was cancelled first
            CheckInFailedException: If the server rejected the check-in
        """
        if registration.is_checked_in:
            self.logger.info(f"Registration {registration.id} already checked in")
            return ScanResult(registration=registration, already_checked_in=True, method=method)

        if token is not None:
            token.raise_if_cancelled("Check-in")

        request = CheckInRequest(
            event_id=event_id,
            registration_id=registration.id,
            check_in_method=method,
            center_id=registration.participation.center_id or None,
            notes=notes or None
        )
        attendance = self.attendance_repository.check_in(request)
        self.logger.info(
            f"Checked in registration {registration.id} for event {event_id} via {method.value}"
        )
        return ScanResult(
            registration=registration,
            already_checked_in=False,
            method=method,
            attendance=attendance
        )

    def process(self, event_id: str, code: str, method: CheckInMethod,
                token: Optional[CancellationToken] = None, notes: Optional[str] = None) -> ScanResult:
        """
        Run the whole pipeline for one code

        Args:
            event_id: Selected event
            code: Scanned or typed code
            method: How the code was captured
            token: Cancellation token of the current run
            notes: Optional operator note for the check-in

        Returns:
            ScanResult of the check-in or of the duplicate

        Raises:
            KioskException: Any pipeline failure
        """
        registration = self.find_registration(event_id, code)
        if token is not None:
            token.raise_if_cancelled("Lookup")
        return self.check_in(event_id, registration, method, token, notes)


class KioskSession:
    """
    One check-in station

    Holds the current KioskState and applies every change through the
    reducer. A lock guards the move into PROCESSING so the web request
    thread and the camera thread cannot start overlapping runs; the
    network calls themselves run outside the lock.
    """

    def __init__(self, event_service: EventService, checkin_service: CheckInService,
                 scanner: Optional[Scanner] = None, error_display: str = 'inline',
                 scan_debouncer: Optional[DecodeDebouncer] = None):
        """
        Initialize kiosk session

        Args:
            event_service: Service for the event selector
            checkin_service: Service running the pipeline
            scanner: Camera scanner, NullScanner when omitted
            error_display: 'inline' or 'toast'
            scan_debouncer: Drops repeated camera reads of one code
                (3 second window when omitted)
        """
        self.event_service = event_service
        self.checkin_service = checkin_service
        self.scanner = scanner or NullScanner()
        self.error_display = error_display
        self.scan_debouncer = scan_debouncer or DecodeDebouncer(3.0)
        self.events: List[Event] = []
        self.active_tab = BARCODE_TAB
        self.logger = logging.getLogger('kiosk_session')

        self._state = KioskState()
        self._lock = threading.RLock()
        self._token: Optional[CancellationToken] = None
        self._notifications: Deque[Tuple[str, str]] = deque(maxlen=20)

    @property
    def state(self) -> KioskState:
        return self._state

    def dispatch(self, action) -> KioskState:
        with self._lock:
            self._state = reduce(self._state, action)
            return self._state

    # Notifications

    def notify(self, level: str, message: str) -> None:
        self._notifications.append((level, message))

    def drain_notifications(self) -> List[Tuple[str, str]]:
        """Return and forget the notifications raised since the last call"""
        with self._lock:
            items = list(self._notifications)
            self._notifications.clear()
            return items

    # Event gate

    def load_events(self) -> List[Event]:
        """
        Refresh the event list for the selector

        A failure leaves the list empty and raises a notification.
        """
        try:
            self.events = self.event_service.list_published_events()
        except KioskException as e:
            self.logger.error(f"Failed to load events: {e}")
            self.events = []
            self.notify('error', "Failed to load events")
        return self.events

    def select_event(self, event_id: Optional[str]) -> KioskState:
        """
        Select the event to check people in for

        Cancels any run in flight and resets the input, result and
        error. A running camera keeps scanning for the new event;
        deselecting the event stops it.
        """
        self._cancel_run()
        if not event_id:
            self.stop_camera()
        with self._lock:
            self.scan_debouncer.reset()
        state = self.dispatch(SelectEvent(event_id or None))
        self.logger.info(f"Event selected: {state.event_id or '(none)'}")
        return state

    # Code input

    def update_input(self, text: str) -> KioskState:
        """Replace the contents of the code field; ignored while input is disabled"""
        return self.dispatch(UpdateInput(text))

    def submit_manual(self, code: Optional[str] = None,
                      notes: Optional[str] = None) -> Optional[KioskState]:
        """
        Submit the code field

        ``code``, when given, is typed into the field first. The method
        is KIOSK in kiosk mode and MANUAL otherwise. The field ends up
        empty whatever the outcome.

        Returns:
            The resulting state, or None if the submission was ignored
        """
        if code is not None:
            self.update_input(code)
        state = self.handle_check_in(self._state.input_buffer, self._state.manual_method, notes)
        if state is None and self._state.input_buffer:
            self.update_input("")
        return state

    def submit_scan(self, code: str) -> Optional[KioskState]:
        """
        Submit a code decoded by a camera

        Repeated reads of the same code are dropped until the code has
        been out of view for the debounce window.

        Returns:
            The resulting state, or None if the read was dropped or ignored
        """
        code = (code or "").strip()
        with self._lock:
            if not code or not self.scan_debouncer.accept(code):
                self.logger.debug(f"Dropped repeated read {code!r}")
                return None
        return self.handle_check_in(code, CheckInMethod.QR)

    def handle_check_in(self, code: str, method: CheckInMethod,
                        notes: Optional[str] = None) -> Optional[KioskState]:
        """
        Look up a code and check the registration in

        Args:
            code: Scanned or typed code
            method: How the code was captured
            notes: Optional operator note for the check-in

        Returns:
            The resulting state, or None if the submission was ignored
            (blank code, no event, or a run already in flight)
        """
        code = (code or "").strip()
        with self._lock:
            before = self._state
            after = reduce(before, SubmitCode(code, method))
            if after.request_id == before.request_id:
                self.logger.debug(f"Ignored submission {code!r} in phase {before.phase.value}")
                return None
            self._state = after
            token = self._token = CancellationToken()

        outcome = self._run(after, token, lambda: self.checkin_service.process(
            after.event_id, code, method, token, notes
        ))
        return self._finish(outcome)

    def choose_candidate(self, registration_id: str) -> Optional[KioskState]:
        """
        Resolve an ambiguous lookup by picking one of the candidates

        Returns:
            The resulting state, or None if there was nothing to resolve
        """
        with self._lock:
            before = self._state
            candidate = next((c for c in before.candidates if c.id == registration_id), None)
            after = reduce(before, ResolveCandidate(registration_id))
            if candidate is None or after.request_id == before.request_id:
                return None
            self._state = after
            token = self._token = CancellationToken()

        method = after.pending_method or after.manual_method
        outcome = self._run(after, token, lambda: self.checkin_service.check_in(
            after.event_id, candidate, method, token
        ))
        return self._finish(outcome)

    def _run(self, state: KioskState, token: CancellationToken, pipeline):
        request_id = state.request_id
        try:
            result = pipeline()
        except RegistrationNotFoundException as e:
            self.logger.info(f"No registration for {e.code!r} in event {e.event_id}")
            return LookupNotFound(request_id)
        except AmbiguousRegistrationException as e:
            self.logger.info(f"{len(e.candidates)} registrations match {e.code!r}")
            return LookupAmbiguous(request_id, tuple(e.candidates))
        except OperationCancelledException as e:
            self.logger.info(str(e))
            return CheckInFailed(request_id, e.message)
        except AlreadyCheckedInException as e:
            self.logger.info(f"Server refused duplicate check-in of {e.registration_id}")
            return CheckInFailed(request_id, e.message)
        except KioskException as e:
            self.logger.warning(f"Check-in failed: {e}")
            return CheckInFailed(request_id, e.message)
        except Exception:
            self.logger.exception("Unexpected error during check-in")
            return CheckInFailed(request_id, None)

        if result.already_checked_in:
            return AlreadyCheckedIn(request_id, result)
        return CheckInSucceeded(request_id, result)

    def _finish(self, outcome) -> KioskState:
        state = self.dispatch(outcome)
        if state.request_id != outcome.request_id:
            return state
        if isinstance(outcome, CheckInSucceeded):
            self.notify('success', "Checked In Successfully!")
        elif state.phase == KioskPhase.ERROR and self.error_display == 'toast':
            self.notify('error', state.error_message)
        return state

    def _cancel_run(self) -> None:
        with self._lock:
            if self._token is not None:
                self._token.cancel()
                self._token = None

    # Kiosk mode

    def set_kiosk_mode(self, enabled: bool) -> KioskState:
        return self.dispatch(SetKioskMode(enabled))

    # Camera

    def switch_tab(self, tab: str) -> None:
        """Switch between the barcode and camera tabs; leaving the camera stops it"""
        if tab not in (BARCODE_TAB, CAMERA_TAB):
            raise ValueError(f"Unknown tab: {tab}")
        if tab != CAMERA_TAB:
            self.stop_camera()
        self.active_tab = tab

    def start_camera(self) -> bool:
        """
        Start the camera scanner

        Every decoded code goes through handle_check_in with method QR.
        A device failure raises a notification; the barcode path keeps
        working.

        Returns:
            True if the camera is running
        """
        if not self._state.event_id:
            return False

        self.stop_camera()
        try:
            self.scanner.start(self._on_decode)
        except ScannerDeviceException as e:
            self.logger.warning(f"Failed to start scanner: {e.details}")
            self.notify('error', e.message)
            self.dispatch(SetCameraActive(False))
            return False

        self.dispatch(SetCameraActive(True))
        return True

    def stop_camera(self) -> None:
        if self.scanner.is_active or self._state.camera_active:
            self.scanner.stop()
            self.logger.info("Scanner stopped")
        self.dispatch(SetCameraActive(False))

    def _on_decode(self, text: str) -> None:
        self.logger.info(f"Scanned: {text}")
        self.submit_scan(text)

    def close(self) -> None:
        """Cancel any run in flight and release the camera"""
        self._cancel_run()
        self.stop_camera()
