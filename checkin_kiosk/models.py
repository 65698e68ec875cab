"""
Data Models for the Check-in Kiosk

This module contains the dataclasses that mirror the backend's events,
registrations and attendance records, plus the ephemeral scan result the
kiosk shows after each lookup. The backend speaks camelCase JSON; every
model has a ``from_dict`` that reads it and tolerates missing optionals.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import DataValidationException


NO_CENTER = "No Center Assigned"


class RegistrationStatus(Enum):
    """Enumeration for registration status"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CANCELLED = "CANCELLED"
    WAITLISTED = "WAITLISTED"

    @classmethod
    def parse(cls, value: Any) -> 'RegistrationStatus':
        """
        Parse a status string from the backend

        Raises:
            DataValidationException: If the status is unknown
        """
        try:
            return cls(str(value).upper())
        except ValueError:
            raise DataValidationException("status", f"Unknown registration status {value!r}")


class CheckInMethod(Enum):
    """How a code was captured, recorded by the server for audit"""
    QR = "QR"
    SAC = "SAC"
    MANUAL = "MANUAL"
    KIOSK = "KIOSK"

    @classmethod
    def parse(cls, value: Any) -> 'CheckInMethod':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise DataValidationException("checkInMethod", f"Unknown check-in method {value!r}")


def extract_items(payload: Any) -> List[Dict]:
    """
    Pull a list of records out of a backend response

    The backend is not consistent about its envelope; list endpoints
    have been seen answering with a bare list, ``{"data": [...]}`` and
    ``{"data": {"data": [...]}}``.

    Args:
        payload: Parsed JSON body

    Returns:
        List of record dictionaries (empty if none could be found)
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
    return []


def extract_item(payload: Any) -> Dict:
    """Unwrap a single-record response such as ``{"data": {...}}``"""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    if isinstance(payload, dict):
        return payload
    return {}


def _require(data: Dict, key: str, entity: str) -> Any:
    value = data.get(key)
    if value in (None, ""):
        raise DataValidationException(f"{entity}.{key}", "missing required value")
    return value


@dataclass
class Event:
    """
    Data model for a published event

    Read-only on the kiosk; only the fields the event selector needs
    are kept.
    """
    id: str
    title: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    participation_mode: Optional[str] = None
    is_published: bool = True

    @classmethod
    def from_dict(cls, data: Dict) -> 'Event':
        """
        Create Event instance from a backend record

        Args:
            data: Dictionary in the backend's camelCase shape

        Returns:
            Event instance

        Raises:
            DataValidationException: If id is missing
        """
        return cls(
            id=str(_require(data, "id", "event")),
            title=data.get("title") or data.get("name") or "Untitled event",
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            participation_mode=data.get("participationMode"),
            is_published=bool(data.get("isPublished", True))
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "participationMode": self.participation_mode,
            "isPublished": self.is_published,
        }


@dataclass
class Member:
    """Data model for the member a registration belongs to"""
    id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    fcs_code: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional['Member']:
        if not data:
            return None
        return cls(
            id=data.get("id"),
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            fcs_code=data.get("fcsCode"),
            name=data.get("name")
        )

    @property
    def full_name(self) -> str:
        joined = " ".join(part for part in (self.first_name, self.last_name) if part)
        return joined or self.name or ""

    @property
    def initial(self) -> str:
        source = self.first_name or self.full_name
        return source[0].upper() if source else "?"

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fcsCode": self.fcs_code,
        }


@dataclass
class Participation:
    """How and where a member takes part in an event"""
    mode: Optional[str] = None
    center_id: Optional[str] = None
    center_name: Optional[str] = None

    @classmethod
    def from_registration(cls, data: Dict) -> 'Participation':
        """
        Read participation details from a registration record

        Newer backends nest them under ``participation``; older ones put
        ``centerId``, ``center`` and ``participationMode`` at the top level.
        """
        nested = data.get("participation") or {}
        nested_center = nested.get("center") or {}
        top_center = data.get("center") or {}
        return cls(
            mode=nested.get("mode") or data.get("participationMode"),
            center_id=nested.get("centerId") or nested_center.get("id") or data.get("centerId"),
            center_name=(nested_center.get("centerName") or nested_center.get("name")
                         or top_center.get("centerName") or top_center.get("name"))
        )


@dataclass
class Registration:
    """
    Data model for an event registration

    The kiosk only ever reads registrations; the status changes on the
    server when a check-in succeeds.
    """
    id: str
    event_id: Optional[str]
    status: RegistrationStatus
    member: Optional[Member] = None
    participation: Participation = field(default_factory=Participation)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Registration':
        """
        Create Registration instance from a backend record

        Args:
            data: Dictionary in the backend's camelCase shape

        Returns:
            Registration instance

        Raises:
            DataValidationException: If id or status is missing or invalid
        """
        return cls(
            id=str(_require(data, "id", "registration")),
            event_id=data.get("eventId"),
            status=RegistrationStatus.parse(_require(data, "status", "registration")),
            member=Member.from_dict(data.get("member")),
            participation=Participation.from_registration(data)
        )

    @property
    def is_checked_in(self) -> bool:
        return self.status == RegistrationStatus.CHECKED_IN

    @property
    def fcs_code(self) -> Optional[str]:
        return self.member.fcs_code if self.member else None

    def matches_code(self, code: str) -> bool:
        """Check whether the member's FCS code equals ``code`` ignoring case"""
        return bool(self.fcs_code) and self.fcs_code.strip().lower() == code.strip().lower()

    def with_status(self, status: RegistrationStatus) -> 'Registration':
        return replace(self, status=status)

    def to_dict(self) -> Dict:
        data = {
            "id": self.id,
            "eventId": self.event_id,
            "status": self.status.value,
            "participation": {
                "mode": self.participation.mode,
                "centerId": self.participation.center_id,
                "center": {"centerName": self.participation.center_name},
            },
        }
        if self.member:
            data["member"] = self.member.to_dict()
        return data


@dataclass
class CheckInRequest:
    """Body of ``POST /attendance/check-in``"""
    event_id: str
    registration_id: str
    check_in_method: CheckInMethod
    center_id: Optional[str] = None
    notes: Optional[str] = None

    def to_payload(self) -> Dict:
        """
        Convert to the JSON body the backend expects

        Optional keys are left out rather than sent as null.
        """
        payload = {
            "eventId": self.event_id,
            "registrationId": self.registration_id,
            "checkInMethod": self.check_in_method.value,
        }
        if self.center_id:
            payload["centerId"] = self.center_id
        if self.notes:
            payload["notes"] = self.notes
        return payload


@dataclass
class AttendanceRecord:
    """
    Data model for the attendance record returned by a check-in

    The response may carry the member and center; the kiosk prefers
    them over its own copy of the registration when showing the result.
    """
    id: Optional[str]
    registration_id: Optional[str]
    event_id: Optional[str]
    check_in_method: Optional[CheckInMethod] = None
    check_in_time: Optional[str] = None
    center_id: Optional[str] = None
    center_name: Optional[str] = None
    member: Optional[Member] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'AttendanceRecord':
        method = data.get("checkInMethod")
        center = data.get("center") or {}
        return cls(
            id=data.get("id"),
            registration_id=data.get("registrationId"),
            event_id=data.get("eventId"),
            check_in_method=CheckInMethod.parse(method) if method else None,
            check_in_time=data.get("checkInTime"),
            center_id=data.get("centerId") or center.get("id"),
            center_name=center.get("centerName") or center.get("name"),
            member=Member.from_dict(data.get("member"))
        )


@dataclass
class ScanResult:
    """
    Outcome of one scan cycle

    Created on each successful lookup and replaced on the next attempt;
    it is never persisted.
    """
    registration: Registration
    already_checked_in: bool
    method: Optional[CheckInMethod] = None
    attendance: Optional[AttendanceRecord] = None

    @property
    def _members(self) -> List[Member]:
        """Members to read display fields from, check-in response first"""
        members = []
        if self.attendance and self.attendance.member:
            members.append(self.attendance.member)
        if self.registration.member:
            members.append(self.registration.member)
        return members

    @property
    def display_name(self) -> str:
        return next((m.full_name for m in self._members if m.full_name), "")

    @property
    def display_initial(self) -> str:
        return next((m.initial for m in self._members if m.full_name), "?")

    @property
    def display_code(self) -> str:
        return next((m.fcs_code for m in self._members if m.fcs_code), "")

    @property
    def display_center(self) -> str:
        if self.attendance and self.attendance.center_name:
            return self.attendance.center_name
        return self.registration.participation.center_name or NO_CENTER

    def to_dict(self) -> Dict:
        return {
            "registrationId": self.registration.id,
            "alreadyCheckedIn": self.already_checked_in,
            "method": self.method.value if self.method else None,
            "name": self.display_name,
            "code": self.display_code,
            "center": self.display_center,
        }
