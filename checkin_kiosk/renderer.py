"""
Feedback Renderer

Maps a KioskState to what the feedback panel shows. Pure: no I/O, no
Flask, so the template and the CLI render the same thing.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from .state import KioskPhase, KioskState

TONE_NEUTRAL = "neutral"
TONE_BUSY = "busy"
TONE_SUCCESS = "success"
TONE_WARNING = "warning"
TONE_ERROR = "error"


@dataclass
class Feedback:
    phase: str
    tone: str
    title: str
    message: str = ""
    initial: str = ""
    name: str = ""
    code: str = ""
    center: str = ""
    candidates: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "phase": self.phase,
            "tone": self.tone,
            "title": self.title,
            "message": self.message,
            "initial": self.initial,
            "name": self.name,
            "code": self.code,
            "center": self.center,
            "candidates": self.candidates,
        }

    def as_text(self) -> str:
        """One-line rendering for the terminal"""
        parts = [self.title]
        if self.message:
            parts.append(self.message)
        if self.name:
            parts.append(f"{self.name}, {self.code}, Center: {self.center}")
        for candidate in self.candidates:
            parts.append(f"  [{candidate['id']}] {candidate['name']} ({candidate['code']})")
        return "\n".join(parts)


def _with_participant(feedback: Feedback, state: KioskState) -> Feedback:
    result = state.result
    feedback.initial = result.display_initial
    feedback.name = result.display_name
    feedback.code = result.display_code
    feedback.center = result.display_center
    return feedback


def render_feedback(state: KioskState) -> Feedback:
    """
    Build the feedback for the current state

    Args:
        state: Current kiosk state

    Returns:
        Feedback describing tone, headline and participant details
    """
    phase = state.phase.value

    if not state.event_id:
        return Feedback(
            phase, TONE_NEUTRAL, "Select an event first",
            "Please select an event from the dropdown menu above before you can start scanning attendees."
        )

    if state.phase == KioskPhase.PROCESSING:
        return Feedback(phase, TONE_BUSY, "Checking records...")

    if state.phase == KioskPhase.SUCCESS and state.result:
        return _with_participant(Feedback(phase, TONE_SUCCESS, "Check-In Successful!"), state)

    if state.phase == KioskPhase.DUPLICATE and state.result:
        return _with_participant(Feedback(phase, TONE_WARNING, "Already Checked In"), state)

    if state.phase == KioskPhase.AMBIGUOUS:
        candidates = [
            {
                "id": registration.id,
                "name": registration.member.full_name if registration.member else "",
                "code": registration.fcs_code or "",
                "status": registration.status.value,
            }
            for registration in state.candidates
        ]
        return Feedback(
            phase, TONE_WARNING, "Multiple registrations match",
            f"Choose the right registration for '{state.pending_code}'",
            candidates=candidates
        )

    if state.phase == KioskPhase.ERROR:
        tone = TONE_WARNING if "already checked in" in state.error_message.lower() else TONE_ERROR
        return Feedback(phase, tone, "Check-In Failed", state.error_message)

    return Feedback(phase, TONE_NEUTRAL, "Ready to scan", "Scan a badge or enter an FCS code")
