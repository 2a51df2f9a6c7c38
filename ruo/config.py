# ruo/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# Chargement .env en local (pas sur Render/Prod)
if os.getenv("RENDER") is None and os.getenv("ENV", "dev") == "dev":
    load_dotenv()

# URL publique du backend (sans / final). Ex: https://api.rechtundordnung.de
BASE_PUBLIC_URL = os.getenv("BASE_PUBLIC_URL", os.getenv("RENDER_EXTERNAL_URL", "")).rstrip("/")

ENV = os.getenv("ENV", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Base de données (postgresql+asyncpg://... en prod, sqlite+aiosqlite://... en local)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./ruo.db").strip()
DB_SSL = os.getenv("DB_SSL", "0") == "1"

# Stockage local des preuves (photos / vidéos), un sous-dossier par dossier RUO
STATIC_DIR = os.getenv("STATIC_DIR", "/tmp/ruo-uploads")
Path(STATIC_DIR).mkdir(parents=True, exist_ok=True)
STATIC_URL_PATH = os.getenv("STATIC_URL_PATH", "/uploads")

MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(15 * 1024 * 1024)))
MAX_VIDEO_BYTES = int(os.getenv("MAX_VIDEO_BYTES", str(50 * 1024 * 1024)))

# Aktenzeichen: RUO-YYMM-NNNN
CASE_PREFIX = os.getenv("CASE_PREFIX", "RUO")
CASE_NUMBER_ATTEMPTS = int(os.getenv("CASE_NUMBER_ATTEMPTS", "5"))

# Mail sortant (SMTP)
MAIL_DOMAIN = os.getenv("MAIL_DOMAIN", "rechtundordnung.treudler.net")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "RechtUndOrdnung")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_STARTTLS = os.getenv("SMTP_STARTTLS", "1") != "0"
MAIL_TIMEOUT_SEC = float(os.getenv("MAIL_TIMEOUT_SEC", "30"))

# Annuaire des autorités (weg.li)
WEGLI_API_URL = os.getenv("WEGLI_API_URL", "https://www.weg.li/api").rstrip("/")
WEGLI_API_KEY = os.getenv("WEGLI_API_KEY", "")
DIRECTORY_TIMEOUT_SEC = float(os.getenv("DIRECTORY_TIMEOUT_SEC", "5"))

# Cache des autorités
AUTHORITY_MAX_AGE_DAYS = int(os.getenv("AUTHORITY_MAX_AGE_DAYS", "90"))
AUTHORITY_NEGATIVE_TTL_SEC = int(os.getenv("AUTHORITY_NEGATIVE_TTL_SEC", "0"))  # 0 = pas de cache négatif
AUTHORITY_REFRESH_INTERVAL_MIN = int(os.getenv("AUTHORITY_REFRESH_INTERVAL_MIN", "360"))
AUTHORITY_REFRESH_BATCH = int(os.getenv("AUTHORITY_REFRESH_BATCH", "50"))

# Reverse geocoding (Nominatim)
GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/reverse")
GEOCODER_LANGUAGE = os.getenv("GEOCODER_LANGUAGE", "de")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "RUO-Platform/1.0")
GEOCODER_TIMEOUT_SEC = float(os.getenv("GEOCODER_TIMEOUT_SEC", "8"))

# Détection de proximité
PROXIMITY_RADIUS_M = float(os.getenv("PROXIMITY_RADIUS_M", "50"))
PROXIMITY_LIMIT = int(os.getenv("PROXIMITY_LIMIT", "10"))

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") != "0"

ADMIN_TOKEN = (os.getenv("ADMIN_TOKEN") or "").strip()
