"""
Custom Exceptions for the Check-in Kiosk

This module defines the exception classes raised by the API client,
repositories, scanner and check-in pipeline. The kiosk session converts
every one of them into a feedback state, so none reach the page.
"""


class KioskException(Exception):
    """
    Base exception for the check-in kiosk

    All custom exceptions in the kiosk inherit from this class so the
    pipeline boundary can catch them in one place.
    """

    default_code = "KIOSK_ERROR"

    def __init__(self, message: str, error_code: str = None):
        """
        Initialize kiosk exception

        Args:
            message: Human-readable error message shown to the operator
            error_code: Optional error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code

    def __str__(self) -> str:
        """String representation of the exception"""
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class RegistrationNotFoundException(KioskException):
    """
    Raised when a scanned or typed code matches no registration

    The search is scoped to the selected event, so a code registered
    for a different event also ends up here.
    """

    def __init__(self, code: str, event_id: str = None):
        """
        Initialize registration not found exception

        Args:
            code: The code that was looked up
            event_id: The event the search was scoped to
        """
        super().__init__("Registration not found", "REGISTRATION_NOT_FOUND")
        self.code = code
        self.event_id = event_id


class AmbiguousRegistrationException(KioskException):
    """
    Raised when a code matches more than one registration

    The candidates are carried along so the operator can pick the
    right one instead of the kiosk guessing.
    """

    def __init__(self, code: str, candidates: list):
        """
        Initialize ambiguous registration exception

        Args:
            code: The code that was looked up
            candidates: Registrations returned by the search
        """
        message = f"{len(candidates)} registrations match '{code}'"
        super().__init__(message, "AMBIGUOUS_REGISTRATION")
        self.code = code
        self.candidates = list(candidates)


class AlreadyCheckedInException(KioskException):
    """Raised by a store that refuses a second check-in"""

    def __init__(self, registration_id: str):
        super().__init__("Member already checked in", "ALREADY_CHECKED_IN")
        self.registration_id = registration_id


class CheckInFailedException(KioskException):
    """
    Raised when the check-in call is rejected

    Covers validation, permission and server errors reported by the
    backend. The server's message is kept when it sent one.
    """

    def __init__(self, registration_id: str, reason: str = None):
        """
        Initialize check-in failed exception

        Args:
            registration_id: Registration the check-in was attempted for
            reason: Message returned by the server, if any
        """
        super().__init__(reason or "Error processing check-in", "CHECK_IN_FAILED")
        self.registration_id = registration_id
        self.reason = reason


class ScannerDeviceException(KioskException):
    """
    Raised when the camera scanner cannot start

    Typical causes are a denied camera permission, missing hardware or
    a missing decoding library.
    """

    def __init__(self, details: str):
        """
        Initialize scanner device exception

        Args:
            details: What went wrong while starting the device
        """
        super().__init__(
            "Failed to start camera. Please check permissions.",
            "SCANNER_DEVICE_ERROR"
        )
        self.details = details


class ApiRequestException(KioskException):
    """
    Raised when a request to the backend fails

    Carries the HTTP status (None for transport errors) and the error
    code reported by the backend.
    """

    default_code = "API_ERROR"

    def __init__(self, message: str, status_code: int = None,
                 error_code: str = None, response: object = None):
        """
        Initialize API request exception

        Args:
            message: Message extracted from the response body
            status_code: HTTP status code, None for transport errors
            error_code: Error code from the response body
            response: Parsed response body
        """
        super().__init__(message, error_code)
        self.status_code = status_code
        self.response = response


class ApiTimeoutException(ApiRequestException):
    """Raised when a request to the backend does not finish in time"""

    def __init__(self, method: str, url: str):
        super().__init__("Request timed out", error_code="API_TIMEOUT")
        self.method = method
        self.url = url


class AuthenticationRequiredException(ApiRequestException):
    """Raised when the backend rejects the access token"""

    def __init__(self, message: str = None, response: object = None):
        super().__init__(
            message or "Authentication required",
            status_code=401,
            error_code="AUTH_REQUIRED",
            response=response
        )


class OperationCancelledException(KioskException):
    """Raised when a pipeline run was cancelled before it finished"""

    def __init__(self, operation: str):
        super().__init__(f"{operation} cancelled", "CANCELLED")
        self.operation = operation


class DataValidationException(KioskException):
    """
    Raised when data validation fails

    This exception is thrown when a payload from the backend, a fixture
    file or a form field doesn't meet the required shape.
    """

    def __init__(self, field_name: str, validation_error: str):
        """
        Initialize data validation exception

        Args:
            field_name: Name of the field that failed validation
            validation_error: Description of the validation error
        """
        message = f"Validation error in field '{field_name}': {validation_error}"
        super().__init__(message, "VALIDATION_ERROR")
        self.field_name = field_name
        self.validation_error = validation_error
