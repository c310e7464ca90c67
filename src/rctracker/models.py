import math
import re
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

DEFAULT_CONDITION = "Unknown"
LEADING_NUMBER = re.compile(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _to_float(value) -> float:
    """Lenient form-number coercion: the leading number of the input, or 0 when there is none.

    '12.3s' gives 12.3; non-finite values (inf, NaN) give 0.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        m = LEADING_NUMBER.match(str(value))
        if not m:
            return 0.0
        number = float(m.group(0))
    if not math.isfinite(number):
        return 0.0
    return number


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class Weather:
    def __init__(self, temp=0, condition=DEFAULT_CONDITION):
        self.temp: float = temp
        self.condition: str = condition

    @classmethod
    def default(cls):
        return cls(0, DEFAULT_CONDITION)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        if not data:
            return cls.default()
        return cls(data.get('temp', 0), data.get('condition', DEFAULT_CONDITION))

    def __eq__(self, other):
        return isinstance(other, Weather) and (self.temp, self.condition) == (other.temp, other.condition)

    def __str__(self):
        return f"W({self.temp}, {self.condition})"

    def toJSON(self):
        return {"temp": self.temp, "condition": self.condition}


class Setup:
    def __init__(self, tires, favorite=False):
        self.tires: str = tires
        self.favorite: bool = favorite

    def toJSON(self):
        return {"tires": self.tires, "favorite": self.favorite}


class Run:
    def __init__(self, best_lap=0.0, avg_lap=0.0, five_minute_stint=None, notes=None, setup=None):
        self.best_lap: float = best_lap
        self.avg_lap: float = avg_lap
        self.five_minute_stint: Optional[str] = five_minute_stint
        self.notes: Optional[str] = notes
        self.setup: Optional[Setup] = setup

    def __str__(self):
        return f"Run(best={self.best_lap}, avg={self.avg_lap}, stint={self.five_minute_stint})"

    @classmethod
    def from_form(cls, form: Dict[str, Any]):
        """Build a Run from raw user input.

        Lap times are coerced to numbers (0 when unparsable). The stint and
        notes are kept only when non-empty and a setup is recorded only when
        tires were given.
        """
        run = cls(best_lap=_to_float(form.get('bestLap')), avg_lap=_to_float(form.get('avgLap')))
        if form.get('fiveMinuteStint'):
            run.five_minute_stint = str(form['fiveMinuteStint'])
        if form.get('notes'):
            run.notes = str(form['notes'])
        if form.get('tires'):
            run.setup = Setup(str(form['tires']), _to_bool(form.get('favorite', False)))
        return run

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        run = cls(best_lap=_to_float(data.get('bestLap')), avg_lap=_to_float(data.get('avgLap')),
                  five_minute_stint=data.get('fiveMinuteStint'), notes=data.get('notes'))
        setup = data.get('setup')
        if isinstance(setup, dict):
            run.setup = Setup(setup.get('tires', ''), bool(setup.get('favorite', False)))
        return run

    def toJSON(self):
        out: Dict[str, Any] = {"bestLap": self.best_lap, "avgLap": self.avg_lap}
        if self.five_minute_stint:
            out["fiveMinuteStint"] = self.five_minute_stint
        if self.notes:
            out["notes"] = self.notes
        if self.setup:
            out["setup"] = self.setup.toJSON()
        return out


class Session:
    """One day of testing at a track. Runs are addressed by position only."""

    def __init__(self, session_id=None, date=None, name=None, runs=None, weather=None, notes=None):
        self.session_id: Optional[str] = session_id
        self.date: str = date or utc_now_iso()
        self.name: Optional[str] = name
        self.runs: List[Run] = runs if runs is not None else []
        self.weather: Weather = weather or Weather.default()
        self.notes: Optional[str] = notes

    def __str__(self):
        return f"S({self.session_id} {self.date}): {self.name}, {len(self.runs)} runs, {self.weather}"

    @classmethod
    def from_dict(cls, session_id, data: Dict[str, Any]):
        return cls(
            session_id=session_id,
            date=data.get('date') or utc_now_iso(),
            name=data.get('name'),
            runs=[Run.from_dict(r) for r in data.get('runs') or []],
            weather=Weather.from_dict(data.get('weather')),
            notes=data.get('notes'))

    def toJSON(self):
        # 'id' is the document key and is not stored in the document body
        out: Dict[str, Any] = {
            "date": self.date,
            "runs": [r.toJSON() for r in self.runs],
            "weather": self.weather.toJSON(),
        }
        if self.name:
            out["name"] = self.name
        if self.notes:
            out["notes"] = self.notes
        return out


class Track:
    def __init__(self, track_id=None, name='', location=None):
        self.track_id: Optional[str] = track_id
        self.name: str = name
        self.location: Optional[Dict[str, float]] = location

    def __str__(self):
        return f"T({self.track_id}): {self.name}"

    @classmethod
    def from_dict(cls, track_id, data: Dict[str, Any]):
        location = data.get('location')
        if isinstance(location, dict) and 'lat' in location and 'lon' in location:
            location = {'lat': _to_float(location['lat']), 'lon': _to_float(location['lon'])}
        else:
            location = None
        return cls(track_id, data.get('name', ''), location)

    def toJSON(self):
        out: Dict[str, Any] = {"name": self.name}
        if self.location:
            out["location"] = self.location
        return out
