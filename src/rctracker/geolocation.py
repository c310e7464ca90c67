"""Position sources for the session pipeline.

The device position is obtained by the client (browser/mobile geolocation)
and reported with the create-session request, either as coordinates or as
the classified error the device returned.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from . import config
from .errors import GeolocationError

logger = logging.getLogger('RCTracker')

Position = Tuple[float, float]

# GeolocationPositionError.code values reported by browsers
BROWSER_ERROR_CODES = {
    '1': GeolocationError.PERMISSION_DENIED,
    '2': GeolocationError.POSITION_UNAVAILABLE,
    '3': GeolocationError.TIMEOUT,
}


def geolocation_options(timeout=None) -> Dict[str, Any]:
    """Options the client should pass to its geolocation API (relaxed accuracy, bounded wait)."""
    timeout = config.GEOLOCATION_TIMEOUT if timeout is None else timeout
    return {'enableHighAccuracy': False, 'timeout': int(timeout * 1000), 'maximumAge': 0}


class GeolocationSource:
    def get_position(self, timeout: Optional[float] = None) -> Position:
        raise NotImplementedError


class FixedPosition(GeolocationSource):
    def __init__(self, lat, lon):
        self.lat = lat
        self.lon = lon

    def get_position(self, timeout=None):
        return self.lat, self.lon


class ReportedPosition(GeolocationSource):
    """Position (or geolocation failure) reported by the client."""

    def __init__(self, position=None, error_code=None, elapsed=None):
        self.position = position
        self.error_code = error_code
        self.elapsed = elapsed

    @classmethod
    def from_request(cls, body: Dict[str, Any]):
        error_code = body.get('geolocationError')
        position = body.get('position')
        if isinstance(position, dict):
            try:
                position = (float(position['lat']), float(position['lon']))
            except (KeyError, TypeError, ValueError):
                logger.warning('Ignoring malformed reported position: %s', position)
                position = None
        else:
            position = None
        elapsed = body.get('elapsed')
        try:
            elapsed = float(elapsed) if elapsed is not None else None
        except (TypeError, ValueError):
            elapsed = None
        return cls(position, error_code, elapsed)

    def get_position(self, timeout=None):
        if self.error_code:
            code = str(self.error_code).strip().upper()
            raise GeolocationError(BROWSER_ERROR_CODES.get(code, code))
        if self.position is None:
            raise GeolocationError(GeolocationError.POSITION_UNAVAILABLE, 'Geolocation is not supported by this browser.')
        timeout = config.GEOLOCATION_TIMEOUT if timeout is None else timeout
        if self.elapsed is not None and self.elapsed > timeout:
            raise GeolocationError(GeolocationError.TIMEOUT)
        return self.position
