"""Tests for session creation: geolocation, weather fallback and persistence."""

from rctracker import config
from rctracker.errors import GeolocationError, PersistenceError, WeatherError
from rctracker.geolocation import FixedPosition, ReportedPosition
from rctracker.models import Weather
from rctracker.pipeline import SessionPipeline
from rctracker.storage import LocalFileStore
from rctracker.tracks import SessionRef, TrackRef, get_session
from rctracker.weather import WeatherClient

FALLBACK = (59.9245, 10.9540)
TRACK = TrackRef("user-1", "track-1")


class _FailingStore(LocalFileStore):
    def add(self, collection_path, data):
        raise PersistenceError("write failed")


# ---------------------------------------------------------------------------
# Weather resolution
# ---------------------------------------------------------------------------


def test_live_position_weather_is_stored(store, make_weather) -> None:
    weather = make_weather(Weather(17.4, "partlycloudy"))
    pipeline = SessionPipeline(store, weather)

    result = pipeline.create_session(TRACK, FixedPosition(60.1, 11.2), name="Evening")

    assert weather.calls == [(60.1, 11.2)]
    assert result.session_id is not None
    assert result.weather == Weather(17.4, "partlycloudy")
    assert not result.fallback_offered
    assert result.status == "Session created successfully"

    stored = get_session(store, SessionRef("user-1", "track-1", result.session_id))
    assert stored.name == "Evening"
    assert stored.runs == []
    assert stored.weather == Weather(17.4, "partlycloudy")


def test_geolocation_failure_falls_back_with_one_lookup(store, make_weather) -> None:
    for code in (GeolocationError.PERMISSION_DENIED, GeolocationError.POSITION_UNAVAILABLE, GeolocationError.TIMEOUT):
        weather = make_weather(Weather(5.0, "cloudy"))
        pipeline = SessionPipeline(store, weather, fallback=FALLBACK)

        result = pipeline.create_session(TRACK, ReportedPosition(error_code=code))

        assert weather.calls == [FALLBACK], code
        assert result.weather == Weather(5.0, "cloudy")
        assert result.fallback_offered
        assert GeolocationError.MESSAGES[code] in result.statuses
        assert "Using fallback weather data (Lørenskog)" in result.statuses


def test_weather_failure_retries_once_at_fallback(store, make_weather) -> None:
    weather = make_weather(WeatherError("Weather API failed with status: 500", 500), Weather(2.0, "rain"))
    pipeline = SessionPipeline(store, weather, fallback=FALLBACK)

    result = pipeline.create_session(TRACK, FixedPosition(48.0, 2.0))

    assert weather.calls == [(48.0, 2.0), FALLBACK]
    assert result.weather == Weather(2.0, "rain")


def test_both_lookups_failing_still_creates_session(store, make_weather) -> None:
    weather = make_weather(WeatherError("primary"), WeatherError("fallback"))
    pipeline = SessionPipeline(store, weather, fallback=FALLBACK)

    result = pipeline.create_session(TRACK, FixedPosition(48.0, 2.0))

    assert len(weather.calls) == 2
    assert result.weather.toJSON() == {"temp": 0, "condition": "Unknown"}
    assert "Failed to retrieve weather data" in result.statuses
    assert result.session_id is not None
    stored = get_session(store, SessionRef("user-1", "track-1", result.session_id))
    assert stored.weather.toJSON() == {"temp": 0, "condition": "Unknown"}


def test_missing_position_counts_as_unavailable(store, make_weather) -> None:
    weather = make_weather(Weather(9.0, "fair"))
    pipeline = SessionPipeline(store, weather, fallback=FALLBACK)

    result = pipeline.create_session(TRACK, ReportedPosition())

    assert weather.calls == [FALLBACK]
    assert result.fallback_offered


def test_slow_position_report_times_out(store, make_weather) -> None:
    weather = make_weather(Weather(9.0, "fair"))
    pipeline = SessionPipeline(store, weather, fallback=FALLBACK, geolocation_timeout=60)

    pipeline.create_session(TRACK, ReportedPosition(position=(1.0, 2.0), elapsed=75))

    assert weather.calls == [FALLBACK]


class _MalformedForecastHttp:
    """Answers every lookup with a forecast whose next-hour summary is not an object."""

    def __init__(self):
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append(params)
        return _JSONResponse({"properties": {"timeseries": [{"data": {
            "instant": {"details": {"air_temperature": 4.0}},
            "next_1_hours": {"summary": "cloudy"},
        }}]}})


class _JSONResponse:
    status_code = 200
    ok = True
    reason = "OK"

    def __init__(self, payload):
        self.payload = payload

    def json(self):
        return self.payload


def test_malformed_forecast_still_creates_session(store) -> None:
    http = _MalformedForecastHttp()
    pipeline = SessionPipeline(store, WeatherClient(http=http), fallback=FALLBACK)

    result = pipeline.create_session(TRACK, FixedPosition(48.0, 2.0))

    assert http.requests == [{"lat": 48.0, "lon": 2.0}, {"lat": FALLBACK[0], "lon": FALLBACK[1]}]
    assert result.fallback_offered
    assert result.weather.toJSON() == {"temp": 0, "condition": "Unknown"}
    assert result.status == "Session created successfully"
    stored = get_session(store, SessionRef("user-1", "track-1", result.session_id))
    assert stored.weather.toJSON() == {"temp": 0, "condition": "Unknown"}


def test_fallback_accepts_a_position_source(store, make_weather) -> None:
    weather = make_weather(WeatherError("primary"), Weather(3.0, "fog"))
    pipeline = SessionPipeline(store, weather, fallback=FixedPosition(63.43, 10.39), fallback_name="Trondheim")

    result = pipeline.create_session(TRACK, FixedPosition(48.0, 2.0))

    assert weather.calls == [(48.0, 2.0), (63.43, 10.39)]
    assert "Using fallback weather data (Trondheim)" in result.statuses


def test_default_fallback_is_a_fixed_position(store, make_weather) -> None:
    pipeline = SessionPipeline(store, make_weather())
    assert isinstance(pipeline.fallback, FixedPosition)
    assert pipeline.fallback.get_position() == (config.FALLBACK_LAT, config.FALLBACK_LON)


# ---------------------------------------------------------------------------
# Record construction and persistence
# ---------------------------------------------------------------------------


def test_empty_name_is_not_stored(store, make_weather) -> None:
    pipeline = SessionPipeline(store, make_weather(Weather(1.0, "fog")))

    result = pipeline.create_session(TRACK, FixedPosition(1.0, 2.0), name="")

    (doc_id, data), = store.list(TRACK.sessions_path)
    assert doc_id == result.session_id
    assert "name" not in data
    assert data["runs"] == []
    assert data["date"].endswith("Z")


def test_persistence_failure_is_reported_not_raised(tmp_path, make_weather) -> None:
    pipeline = SessionPipeline(_FailingStore(str(tmp_path)), make_weather(Weather(1.0, "fog")))

    result = pipeline.create_session(TRACK, FixedPosition(1.0, 2.0))

    assert result.session_id is None
    assert result.status == "Failed to create session"


def test_default_weather_skips_lookups(store, make_weather) -> None:
    weather = make_weather()
    pipeline = SessionPipeline(store, weather)

    result = pipeline.create_session_with_default_weather(TRACK, name="Rainy day")

    assert weather.calls == []
    assert result.status == "Session created with default weather"
    stored = get_session(store, SessionRef("user-1", "track-1", result.session_id))
    assert stored.weather == Weather(0, "Unknown")
    assert stored.name == "Rainy day"
