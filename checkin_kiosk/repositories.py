"""
Data Repository Classes for the Check-in Kiosk

This module implements the Repository pattern for the three backend
resources the kiosk touches: events, registrations and attendance.
The API implementations talk to the REST backend; the in-memory ones
back the tests and offline demos, and can be seeded from a JSON fixture.
"""

import itertools
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .api_client import ApiClient
from .exceptions import (
    AlreadyCheckedInException,
    ApiRequestException,
    CheckInFailedException,
    DataValidationException
)
from .models import (
    AttendanceRecord,
    CheckInRequest,
    Event,
    Registration,
    RegistrationStatus,
    extract_item,
    extract_items
)


class EventRepository(ABC):
    """Read access to events"""

    @abstractmethod
    def list_events(self, published: bool = True, limit: int = 50) -> List[Event]:
        """
        List events

        Args:
            published: Only return published events
            limit: Maximum number of events

        Returns:
            List of events in the order the source returned them
        """
        pass


class RegistrationRepository(ABC):
    """Search access to registrations"""

    @abstractmethod
    def search(self, event_id: str, text: str, limit: int = 1) -> List[Registration]:
        """
        Search registrations of one event by free text

        Args:
            event_id: Event the search is scoped to
            text: Code, name or other free text
            limit: Maximum number of results

        Returns:
            Matching registrations, best match first
        """
        pass


class AttendanceRepository(ABC):
    """Write access to attendance"""

    @abstractmethod
    def check_in(self, request: CheckInRequest) -> AttendanceRecord:
        """
        Check a registration in

        Args:
            request: Check-in request

        Returns:
            The attendance record created by the server

        Raises:
            CheckInFailedException: If the server rejected the check-in
        """
        pass


class ApiEventRepository(EventRepository):
    """Events served by ``GET /events``"""

    def __init__(self, client: ApiClient):
        self.client = client

    def list_events(self, published: bool = True, limit: int = 50) -> List[Event]:
        params = {"limit": limit}
        if published:
            params["isPublished"] = "true"
        payload = self.client.get("/events", params=params)
        return [Event.from_dict(item) for item in extract_items(payload)]


class ApiRegistrationRepository(RegistrationRepository):
    """Registrations served by ``GET /registrations``"""

    def __init__(self, client: ApiClient):
        self.client = client

    def search(self, event_id: str, text: str, limit: int = 1) -> List[Registration]:
        payload = self.client.get(
            "/registrations",
            params={"eventId": event_id, "search": text, "limit": limit}
        )
        return [Registration.from_dict(item) for item in extract_items(payload)[:limit]]


class ApiAttendanceRepository(AttendanceRepository):
    """Check-ins sent to ``POST /attendance/check-in``"""

    def __init__(self, client: ApiClient):
        self.client = client

    def check_in(self, request: CheckInRequest) -> AttendanceRecord:
        try:
            payload = self.client.post("/attendance/check-in", request.to_payload())
        except ApiRequestException as e:
            if e.error_code in ("API_TIMEOUT", "AUTH_REQUIRED"):
                raise
            raise CheckInFailedException(request.registration_id, e.message)

        record = AttendanceRecord.from_dict(extract_item(payload))
        if not record.registration_id:
            record.registration_id = request.registration_id
        if not record.event_id:
            record.event_id = request.event_id
        if not record.check_in_method:
            record.check_in_method = request.check_in_method
        return record


class InMemoryStore:
    """
    Shared in-memory data behind the in-memory repositories

    Behaves like the backend for the parts the kiosk relies on: search
    matches FCS code or member name, and a registration can be checked
    in only once.
    """

    def __init__(self, events: Optional[List[Event]] = None,
                 registrations: Optional[List[Registration]] = None):
        self._lock = threading.Lock()
        self.events: List[Event] = list(events or [])
        self.registrations: Dict[str, Registration] = {
            registration.id: registration for registration in (registrations or [])
        }
        self.check_ins: List[CheckInRequest] = []
        self.searches: List[Tuple[str, str, int]] = []
        self._ids = itertools.count(1)

    def clear(self) -> None:
        """Clear all data from memory"""
        with self._lock:
            self.events.clear()
            self.registrations.clear()
            self.check_ins.clear()
            self.searches.clear()


class InMemoryEventRepository(EventRepository):

    def __init__(self, store: InMemoryStore):
        self.store = store

    def list_events(self, published: bool = True, limit: int = 50) -> List[Event]:
        events = [e for e in self.store.events if e.is_published or not published]
        return events[:limit]


class InMemoryRegistrationRepository(RegistrationRepository):

    def __init__(self, store: InMemoryStore):
        self.store = store

    def search(self, event_id: str, text: str, limit: int = 1) -> List[Registration]:
        needle = text.strip().lower()
        with self.store._lock:
            self.store.searches.append((event_id, text, limit))
            matches = []
            for registration in self.store.registrations.values():
                if registration.event_id != event_id:
                    continue
                member = registration.member
                haystack = [registration.id.lower()]
                if member:
                    haystack.append((member.fcs_code or "").lower())
                    haystack.append(member.full_name.lower())
                if any(needle and needle in value for value in haystack):
                    matches.append(registration)
        return matches[:limit]


class InMemoryAttendanceRepository(AttendanceRepository):

    def __init__(self, store: InMemoryStore):
        self.store = store

    def check_in(self, request: CheckInRequest) -> AttendanceRecord:
        with self.store._lock:
            registration = self.store.registrations.get(request.registration_id)
            if registration is None or registration.event_id != request.event_id:
                raise CheckInFailedException(request.registration_id, "Registration not found")
            if registration.is_checked_in:
                raise AlreadyCheckedInException(request.registration_id)
            if registration.status == RegistrationStatus.CANCELLED:
                raise CheckInFailedException(request.registration_id, "Registration is cancelled")

            self.store.check_ins.append(request)
            self.store.registrations[registration.id] = registration.with_status(
                RegistrationStatus.CHECKED_IN
            )
            return AttendanceRecord(
                id=f"att-{next(self.store._ids)}",
                registration_id=registration.id,
                event_id=request.event_id,
                check_in_method=request.check_in_method,
                check_in_time=datetime.now(timezone.utc).isoformat(),
                center_id=request.center_id,
                center_name=registration.participation.center_name,
                member=registration.member
            )


def load_fixture(file_path: str) -> InMemoryStore:
    """
    Load an in-memory store from a JSON fixture

    The fixture has two keys, ``events`` and ``registrations``, each a
    list of records in the backend's camelCase shape.

    Args:
        file_path: Path to the JSON file

    Returns:
        Populated InMemoryStore

    Raises:
        DataValidationException: If the file is unreadable or malformed
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise DataValidationException("fixture", f"{file_path} does not exist")
    except json.JSONDecodeError as e:
        raise DataValidationException("fixture", f"Invalid JSON in {file_path}: {str(e)}")

    if not isinstance(data, dict):
        raise DataValidationException("fixture", "top level must be an object")

    return InMemoryStore(
        events=[Event.from_dict(item) for item in data.get("events", [])],
        registrations=[Registration.from_dict(item) for item in data.get("registrations", [])]
    )


class Repositories:
    """The three repositories one kiosk works with"""

    def __init__(self, events: EventRepository, registrations: RegistrationRepository,
                 attendance: AttendanceRepository, client: Optional[ApiClient] = None,
                 store: Optional[InMemoryStore] = None):
        self.events = events
        self.registrations = registrations
        self.attendance = attendance
        self.client = client
        self.store = store

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


class RepositoryFactory:
    """
    Factory class for creating repository instances

    This class provides a centralized way to create the repositories
    based on configuration.
    """

    @staticmethod
    def create_api_repositories(client: ApiClient) -> Repositories:
        """
        Create repositories backed by the REST API

        Args:
            client: Configured API client

        Returns:
            Repositories bundle
        """
        return Repositories(
            ApiEventRepository(client),
            ApiRegistrationRepository(client),
            ApiAttendanceRepository(client),
            client=client
        )

    @staticmethod
    def create_memory_repositories(store: Optional[InMemoryStore] = None) -> Repositories:
        """
        Create in-memory repositories sharing one store

        Args:
            store: Optional pre-populated store

        Returns:
            Repositories bundle
        """
        store = store if store is not None else InMemoryStore()
        return Repositories(
            InMemoryEventRepository(store),
            InMemoryRegistrationRepository(store),
            InMemoryAttendanceRepository(store),
            store=store
        )

    @staticmethod
    def create_repositories(repo_type: str, **kwargs) -> Repositories:
        """
        Create repositories based on type

        Args:
            repo_type: Type of repository ('api' or 'memory')
            **kwargs: ``client`` for 'api'; ``store`` or ``fixture_path``
                for 'memory'

        Returns:
            Repositories bundle

        Raises:
            ValueError: If repository type is not supported
        """
        if repo_type.lower() == 'api':
            if 'client' not in kwargs:
                raise ValueError("client is required for API repositories")
            return RepositoryFactory.create_api_repositories(kwargs['client'])

        elif repo_type.lower() == 'memory':
            store = kwargs.get('store')
            if store is None and kwargs.get('fixture_path'):
                store = load_fixture(kwargs['fixture_path'])
            return RepositoryFactory.create_memory_repositories(store)

        else:
            raise ValueError(f"Unsupported repository type: {repo_type}")
