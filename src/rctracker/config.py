import os
import secrets


def _env_flag(name, default='0'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


# Flask
# Use environment-provided secret in production; fall back to a random value for dev.
SECRET_KEY = os.environ.get('FLASK_SECRET') or os.environ.get('APP_SECRET') or secrets.token_urlsafe(16)
SESSION_COOKIE_SECURE = _env_flag('SESSION_COOKIE_SECURE')
SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
DEBUG = _env_flag('FLASK_DEBUG', os.environ.get('DEBUG', '0'))

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Persistence. Firestore when USE_FIRESTORE=1, otherwise JSON files under CONFIG_DIR.
USE_FIRESTORE = _env_flag('USE_FIRESTORE')
CONFIG_DIR = os.environ.get("CONFIG_DIR", "config")

# Firebase Admin (service account file for local dev, ADC on Cloud Run)
FIREBASE_CREDENTIALS = os.environ.get('FIREBASE_CREDENTIALS')

# Weather lookup (MET Norway locationforecast)
WEATHER_API_URL = os.environ.get('WEATHER_API_URL', 'https://api.met.no/weatherapi/locationforecast/2.0/compact')
WEATHER_USER_AGENT = os.environ.get('WEATHER_USER_AGENT', 'RC-Testing-Analyzer/1.0 (your-email@example.com)')
WEATHER_TIMEOUT = float(os.environ.get('WEATHER_TIMEOUT', '10'))

# Geolocation wait and the fixed reference coordinate (Lørenskog)
GEOLOCATION_TIMEOUT = float(os.environ.get('GEOLOCATION_TIMEOUT', '60'))
FALLBACK_LAT = float(os.environ.get('FALLBACK_LAT', '59.9245'))
FALLBACK_LON = float(os.environ.get('FALLBACK_LON', '10.9540'))
FALLBACK_NAME = os.environ.get('FALLBACK_NAME', 'Lørenskog')
