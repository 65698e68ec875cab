"""
Check-in Kiosk Package

An attendance check-in kiosk for a membership and event-registration
backend, built with Flask. The operator picks a published event, then
scans badges (barcode scanner or camera QR) or types FCS codes; each
code is looked up among the event's registrations and checked in
through the backend's REST API.

Main Components:
- models: Events, registrations, attendance records and scan results
- state: The kiosk state machine (a pure reducer)
- api_client: httpx-based client for the REST backend
- repositories: Data access layer with repository pattern
- services: Event loading, the check-in pipeline and the kiosk session
- scanner: Camera scanner capability and its OpenCV implementation
- renderer: Feedback panel contents for each state
- exceptions: Custom exception classes for error handling
- app: Flask application class and factory

Usage:
    from checkin_kiosk import create_app

    app = create_app()
    app.run()
"""

__version__ = "1.0.0"

from .app import create_app, create_development_app, create_production_app
from .models import (
    AttendanceRecord,
    CheckInMethod,
    Event,
    Registration,
    RegistrationStatus,
    ScanResult
)
from .state import KioskPhase, KioskState, reduce
from .services import CheckInService, EventService, KioskSession
from .repositories import RepositoryFactory
from .scanner import Scanner
from .exceptions import (
    KioskException,
    RegistrationNotFoundException,
    AmbiguousRegistrationException,
    CheckInFailedException,
    ScannerDeviceException,
    ApiRequestException,
    ApiTimeoutException,
    DataValidationException
)

__all__ = [
    # App factory functions
    'create_app',
    'create_development_app',
    'create_production_app',

    # Data models
    'AttendanceRecord',
    'CheckInMethod',
    'Event',
    'Registration',
    'RegistrationStatus',
    'ScanResult',

    # State machine
    'KioskPhase',
    'KioskState',
    'reduce',

    # Services
    'CheckInService',
    'EventService',
    'KioskSession',

    # Repository factory
    'RepositoryFactory',

    # Scanner
    'Scanner',

    # Exceptions
    'KioskException',
    'RegistrationNotFoundException',
    'AmbiguousRegistrationException',
    'CheckInFailedException',
    'ScannerDeviceException',
    'ApiRequestException',
    'ApiTimeoutException',
    'DataValidationException'
]
