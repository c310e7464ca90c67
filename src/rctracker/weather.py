"""Ambient weather lookup against the MET Norway locationforecast API."""
import logging
from typing import Any, Dict

import requests

from . import config
from .errors import WeatherError
from .models import Weather

logger = logging.getLogger('RCTracker')

UNKNOWN_SYMBOL = 'unknown'


def condition_from_symbol(symbol_code) -> str:
    """'partlycloudy_day' -> 'partlycloudy'"""
    return (symbol_code or UNKNOWN_SYMBOL).split('_')[0]


def parse_forecast(payload: Dict[str, Any]) -> Weather:
    """Read temperature and condition from the first time-series entry only."""
    try:
        entry = payload['properties']['timeseries'][0]['data']
        temp = entry['instant']['details']['air_temperature']
    except (KeyError, IndexError, TypeError) as e:
        raise WeatherError(f'Malformed weather payload: missing {e}') from e
    if isinstance(temp, bool) or not isinstance(temp, (int, float)):
        raise WeatherError(f'Malformed weather payload: air_temperature is {temp!r}')
    symbol = None
    next_hour = entry.get('next_1_hours')
    if next_hour is not None:
        summary = next_hour.get('summary') if isinstance(next_hour, dict) else None
        if not isinstance(summary, dict):
            raise WeatherError(f'Malformed weather payload: next_1_hours is {next_hour!r}')
        symbol = summary.get('symbol_code')
        if symbol is not None and not isinstance(symbol, str):
            raise WeatherError(f'Malformed weather payload: symbol_code is {symbol!r}')
    return Weather(temp, condition_from_symbol(symbol))


class WeatherClient:
    def __init__(self, base_url=None, user_agent=None, timeout=None, http=None):
        self.base_url = base_url or config.WEATHER_API_URL
        self.user_agent = user_agent or config.WEATHER_USER_AGENT
        self.timeout = config.WEATHER_TIMEOUT if timeout is None else timeout
        self.http = http or requests.Session()

    def lookup(self, lat, lon) -> Weather:
        logger.info('Fetching weather data for lat=%s lon=%s', lat, lon)
        try:
            response = self.http.get(self.base_url,
                                     params={'lat': lat, 'lon': lon},
                                     headers={'User-Agent': self.user_agent},
                                     timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning('Weather API request failed: %s', e)
            raise WeatherError(f'Weather API request failed: {e}') from e
        if not response.ok:
            logger.error('Weather API failed: %s %s', response.status_code, response.reason)
            raise WeatherError(f'Weather API failed with status: {response.status_code}', response.status_code)
        try:
            payload = response.json()
        except ValueError as e:
            raise WeatherError('Weather API returned invalid JSON') from e
        weather = parse_forecast(payload)
        logger.debug('Weather API response parsed: %s', weather)
        return weather
