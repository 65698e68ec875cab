"""
Kiosk State Machine

The kiosk screen is a function of one immutable ``KioskState``. Every
change goes through ``reduce(state, action)``, a pure function, so the
waiting/processing/success/duplicate/ambiguous/error transitions can be
tested without Flask or a network.

Pipeline outcomes carry the ``request_id`` of the run that produced
them. Selecting another event or starting a new run bumps the id, and
outcomes of older runs are dropped.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .models import CheckInMethod, Registration, ScanResult

NOT_FOUND_MESSAGE = "Registration not found"
GENERIC_ERROR_MESSAGE = "Error processing check-in"


class KioskPhase(Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    AMBIGUOUS = "ambiguous"
    ERROR = "error"


@dataclass(frozen=True)
class KioskState:
    event_id: Optional[str] = None
    phase: KioskPhase = KioskPhase.WAITING
    input_buffer: str = ""
    result: Optional[ScanResult] = None
    error_message: str = ""
    candidates: Tuple[Registration, ...] = ()
    pending_code: str = ""
    pending_method: Optional[CheckInMethod] = None
    kiosk_mode: bool = False
    camera_active: bool = False
    request_id: int = 0

    @property
    def processing(self) -> bool:
        return self.phase == KioskPhase.PROCESSING

    @property
    def accepts_input(self) -> bool:
        """Input is enabled once an event is chosen and no run is in flight"""
        return bool(self.event_id) and not self.processing

    @property
    def manual_method(self) -> CheckInMethod:
        return CheckInMethod.KIOSK if self.kiosk_mode else CheckInMethod.MANUAL


# Actions

@dataclass(frozen=True)
class SelectEvent:
    event_id: Optional[str]


@dataclass(frozen=True)
class UpdateInput:
    text: str


@dataclass(frozen=True)
class SubmitCode:
    code: str
    method: CheckInMethod


@dataclass(frozen=True)
class LookupNotFound:
    request_id: int


@dataclass(frozen=True)
class LookupAmbiguous:
    request_id: int
    candidates: Tuple[Registration, ...]


@dataclass(frozen=True)
class AlreadyCheckedIn:
    request_id: int
    result: ScanResult


@dataclass(frozen=True)
class CheckInSucceeded:
    request_id: int
    result: ScanResult


@dataclass(frozen=True)
class CheckInFailed:
    request_id: int
    message: Optional[str] = None


@dataclass(frozen=True)
class ResolveCandidate:
    registration_id: str


@dataclass(frozen=True)
class SetKioskMode:
    enabled: bool


@dataclass(frozen=True)
class SetCameraActive:
    active: bool


_OUTCOMES = (LookupNotFound, LookupAmbiguous, AlreadyCheckedIn, CheckInSucceeded, CheckInFailed)


def _start_run(state: KioskState, code: str, method: Optional[CheckInMethod]) -> KioskState:
    return replace(
        state,
        phase=KioskPhase.PROCESSING,
        input_buffer="",
        result=None,
        error_message="",
        pending_code=code,
        pending_method=method,
        request_id=state.request_id + 1
    )


def reduce(state: KioskState, action) -> KioskState:
    """
    Apply one action to the kiosk state

    Actions that are not allowed in the current state (a submit while
    processing, an outcome from a stale run, a resolve outside the
    ambiguous phase) return the state unchanged.

    Args:
        state: Current state
        action: One of the action dataclasses in this module

    Returns:
        The next state
    """
    if isinstance(action, SelectEvent):
        return KioskState(
            event_id=action.event_id or None,
            kiosk_mode=state.kiosk_mode,
            camera_active=state.camera_active,
            request_id=state.request_id + 1
        )

    if isinstance(action, UpdateInput):
        if not state.accepts_input:
            return state
        return replace(state, input_buffer=action.text)

    if isinstance(action, SubmitCode):
        code = (action.code or "").strip()
        if not code or not state.accepts_input:
            return state
        return replace(_start_run(state, code, action.method), candidates=())

    if isinstance(action, ResolveCandidate):
        if state.phase != KioskPhase.AMBIGUOUS:
            return state
        if not any(c.id == action.registration_id for c in state.candidates):
            return state
        return _start_run(state, state.pending_code, state.pending_method)

    if isinstance(action, _OUTCOMES):
        if action.request_id != state.request_id or not state.processing:
            return state
        if isinstance(action, LookupNotFound):
            return replace(state, phase=KioskPhase.ERROR, error_message=NOT_FOUND_MESSAGE)
        if isinstance(action, LookupAmbiguous):
            return replace(state, phase=KioskPhase.AMBIGUOUS, candidates=tuple(action.candidates))
        if isinstance(action, AlreadyCheckedIn):
            return replace(state, phase=KioskPhase.DUPLICATE, result=action.result, candidates=())
        if isinstance(action, CheckInSucceeded):
            return replace(state, phase=KioskPhase.SUCCESS, result=action.result, candidates=())
        return replace(
            state,
            phase=KioskPhase.ERROR,
            error_message=action.message or GENERIC_ERROR_MESSAGE,
            candidates=()
        )

    if isinstance(action, SetKioskMode):
        return replace(state, kiosk_mode=action.enabled)

    if isinstance(action, SetCameraActive):
        return replace(state, camera_active=action.active)

    raise TypeError(f"Unknown kiosk action: {action!r}")
