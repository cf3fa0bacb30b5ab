from pathlib import Path
import os

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("SIGNALING_SECRET_KEY", "unsafe-dev-secret-key")
DEBUG = os.environ.get("SIGNALING_DEBUG", "0") == "1"

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("SIGNALING_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "corsheaders",
    "django.contrib.staticfiles",
    "signaling",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("SIGNALING_CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

ROOT_URLCONF = "config.urls"

WSGI_APPLICATION = "config.wsgi.application"

# All call data is stored in the Firebase Realtime Database; Django needs no database
DATABASES = {}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

# Call signaling
# firebase | memory
SIGNALING_STORE_BACKEND = os.environ.get("SIGNALING_STORE_BACKEND", "firebase")
# Ring iOS devices that registered a voipToken through APNs (needs APNS_* settings)
SIGNALING_VOIP_PUSH = os.environ.get("SIGNALING_VOIP_PUSH", "1") == "1"
SIGNALING_SESSIONS_PATH = os.environ.get("SIGNALING_SESSIONS_PATH", "calls_sessions")
SIGNALING_DEVICES_PATH = os.environ.get("SIGNALING_DEVICES_PATH", "calls")
SIGNALING_STATUS_HISTORY = os.environ.get("SIGNALING_STATUS_HISTORY", "1") == "1"
SIGNALING_RING_SOUND = os.environ.get("SIGNALING_RING_SOUND", "incoming_call")
SIGNALING_RING_TTL_SECONDS = int(os.environ.get("SIGNALING_RING_TTL_SECONDS", "60"))

# Logging Configuration
LOG_DIR = Path(os.environ.get("SIGNALING_LOG_DIR", BASE_DIR / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "[{asctime}] {levelname} {name} {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "simple": {
            "format": "[{asctime}] {levelname} {message}",
            "style": "{",
            "datefmt": "%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
        "file": {
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "django.log",
            "formatter": "verbose",
        },
        "signaling_file": {
            "class": "logging.FileHandler",
            "filename": LOG_DIR / "signaling.log",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": "INFO",
        },
        "django.request": {
            "handlers": ["console", "file"],
            "level": "DEBUG",
            "propagate": False,
        },
        "signaling": {
            "handlers": ["console", "signaling_file"],
            "level": "DEBUG",
            "propagate": False,
        },
    },
}
