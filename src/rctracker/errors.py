"""Errors raised by the external collaborators (geolocation, weather, store, identity).

They are caught where the service calls the collaborator and turned into a
status message or a JSON error; none of them escape a request.
"""


class TrackerError(Exception):
    pass


class GeolocationError(TrackerError):
    PERMISSION_DENIED = 'PERMISSION_DENIED'
    POSITION_UNAVAILABLE = 'POSITION_UNAVAILABLE'
    TIMEOUT = 'TIMEOUT'

    MESSAGES = {
        PERMISSION_DENIED: 'Location permission denied. Please allow location access for this site in your browser settings.',
        POSITION_UNAVAILABLE: 'Location unavailable. Ensure Location Services are enabled and try again.',
        TIMEOUT: 'Location request timed out. Please try again.',
    }

    def __init__(self, code, message=None):
        if code not in self.MESSAGES:
            code = self.POSITION_UNAVAILABLE
        self.code = code
        super().__init__(message or self.MESSAGES[code])


class WeatherError(TrackerError):
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(TrackerError):
    pass


class AuthError(TrackerError):
    pass
