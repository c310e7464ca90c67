"""Session creation: geolocation, weather lookup with fallback, then persistence.

Steps run strictly in order. Weather is best effort: a failed live lookup
is retried once at the fixed fallback coordinate and, failing that, the
session is stored with default weather. Failures are reported through the
status messages collected on the result, never raised.
"""
import logging
from typing import List, Optional

from . import config
from .errors import GeolocationError, PersistenceError, WeatherError
from .geolocation import FixedPosition, GeolocationSource
from .models import Session, Weather, utc_now_iso
from .storage import DocumentStore
from .tracks import TrackRef
from .weather import WeatherClient

logger = logging.getLogger('RCTracker')


class SessionResult:
    def __init__(self):
        self.session_id: Optional[str] = None
        self.weather: Weather = Weather.default()
        self.statuses: List[str] = []
        # live lookup failed; the client may offer retry / use default weather
        self.fallback_offered: bool = False

    @property
    def status(self) -> str:
        return self.statuses[-1] if self.statuses else ''

    def report(self, message):
        logger.info('createSession status: %s', message)
        self.statuses.append(message)

    def toJSON(self):
        return {
            'id': self.session_id,
            'weather': self.weather.toJSON(),
            'status': self.status,
            'statuses': list(self.statuses),
            'fallbackOffered': self.fallback_offered,
        }


class SessionPipeline:
    def __init__(self, store: DocumentStore, weather_client: WeatherClient,
                 fallback=None, fallback_name=None, geolocation_timeout=None):
        self.store = store
        self.weather_client = weather_client
        if not isinstance(fallback, GeolocationSource):
            fallback = FixedPosition(*(fallback or (config.FALLBACK_LAT, config.FALLBACK_LON)))
        self.fallback = fallback
        self.fallback_name = fallback_name or config.FALLBACK_NAME
        self.geolocation_timeout = config.GEOLOCATION_TIMEOUT if geolocation_timeout is None else geolocation_timeout

    def fetch_weather(self, geolocation: GeolocationSource, result: SessionResult) -> Weather:
        result.report('Requesting location...')
        try:
            lat, lon = geolocation.get_position(timeout=self.geolocation_timeout)
            result.report(f'Location fetched: {lat}, {lon}')
            weather = self.weather_client.lookup(lat, lon)
            result.report('Weather data retrieved successfully')
            return weather
        except (GeolocationError, WeatherError) as e:
            logger.warning('fetchWeather failed: %s', e)
            result.report(str(e))
            result.fallback_offered = True

        lat, lon = self.fallback.get_position()
        logger.info('Using fallback coordinates: lat=%s, lon=%s', lat, lon)
        try:
            weather = self.weather_client.lookup(lat, lon)
        except WeatherError as e:
            logger.error('Fallback weather lookup failed: %s', e)
            result.report('Failed to retrieve weather data')
            return Weather.default()
        result.report(f'Using fallback weather data ({self.fallback_name})')
        return weather

    def _persist(self, track: TrackRef, name, weather: Weather, result: SessionResult):
        session = Session(date=utc_now_iso(), name=name or None, runs=[], weather=weather)
        logger.debug('createSession: Session object: %s', session)
        try:
            result.session_id = self.store.add(track.sessions_path, session.toJSON())
        except PersistenceError:
            logger.exception('createSession: Error persisting session for track %s', track.track_id)
            return False
        logger.info('createSession: Session created with ID: %s', result.session_id)
        return True

    def create_session(self, track: TrackRef, geolocation: GeolocationSource, name=None) -> SessionResult:
        logger.info('createSession: Starting with name: %s', name)
        result = SessionResult()
        result.weather = self.fetch_weather(geolocation, result)
        if self._persist(track, name, result.weather, result):
            result.report('Session created successfully')
        else:
            result.report('Failed to create session')
        return result

    def create_session_with_default_weather(self, track: TrackRef, name=None) -> SessionResult:
        """Skip geolocation and weather entirely (the client's 'use default' choice)."""
        result = SessionResult()
        result.report('Using default weather data')
        if self._persist(track, name, result.weather, result):
            result.report('Session created with default weather')
        else:
            result.report('Failed to create session with default weather')
        return result
