from pathlib import Path
import os
from dotenv import load_dotenv

# ───────────── BASE / ENV ─────────────
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

# ───────────── env helpers ─────────────
from decouple import config as _decouple_config


def _to_bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    return s in ("1", "true", "t", "yes", "y", "on")


def env_str(key, default=""):
    return _decouple_config(key, default=default)


def env_bool(key, default=False):
    return _to_bool(env_str(key, None), default)


def env_int(key, default=0):
    v = env_str(key, None)
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


# ───────────── Base Config ─────────────
SECRET_KEY = env_str("SECRET_KEY", "change-me")
DEBUG = env_bool("DEBUG", False)
ALLOWED_HOSTS = ["127.0.0.1", "localhost"]

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "payments",
]

# ───────────── Database ─────────────
# این اپ دیتابیس لازم ندارد؛ sqlite فقط برای اجرای manage.py و تست‌هاست
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": env_str("DB_NAME", str(BASE_DIR / "db.sqlite3")),
    }
}

# ───────────── i18n / TZ ─────────────
LANGUAGE_CODE = "fa"
TIME_ZONE = "Asia/Tehran"
USE_I18N = True
USE_TZ = True

# ───────────── Payments (Apsan) ─────────────
APSAN_BANK_API_URL = env_str("APSAN_BANK_API_URL", "")
APSAN_TERMINAL_ID = env_str("APSAN_TERMINAL_ID", "")
APSAN_USERNAME = env_str("APSAN_USERNAME", "")
APSAN_PASSWORD = env_str("APSAN_PASSWORD", "")

PAY_REDIRECT_URI = env_str(
    "PAY_REDIRECT_URI", "http://localhost:8000/payments/callback/apsan"
).rstrip("/")

PAYMENTS = {
    "DEFAULT_GATEWAY": "apsan",
    "GATEWAYS": {
        "apsan": {
            "BANK_API_URL": APSAN_BANK_API_URL,
            "TERMINAL_ID": APSAN_TERMINAL_ID,
            "REDIRECT_URI": PAY_REDIRECT_URI,
            "USERNAME": APSAN_USERNAME,
            "PASSWORD": APSAN_PASSWORD,
            "TIMEOUT": env_int("APSAN_TIMEOUT", 25),
            # status → پیام؛ برای جایگزینی متن خطاها
            "MESSAGES": {},
        },
    },
}

# ───────────── Logging ─────────────
LOG_DIR = BASE_DIR / "logs"
os.makedirs(LOG_DIR, exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "[{levelname}] {asctime} {name} :: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
        "file": {
            "class": "logging.FileHandler",
            "filename": str(LOG_DIR / "app.log"),
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {"handlers": ["console", "file"], "level": "INFO"},
        "payments": {"handlers": ["console", "file"], "level": env_str("PAYMENTS_LOG_LEVEL", "DEBUG")},
    },
    "root": {"handlers": ["console", "file"], "level": "INFO"},
}
