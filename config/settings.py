"""
Environment-driven settings. Everything is read once at import time after
loading a local .env file, so tests can set variables before importing.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

# ─── Connection-pool tuning (ignored for sqlite) ───────────────────
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "1800"))

# ─── Portfolio maths ───────────────────────────────────────────────
DUST_THRESHOLD = float(os.getenv("DUST_THRESHOLD", "100"))
# Perp venues do not report margin used per position; assume this leverage.
PERP_ASSUMED_LEVERAGE = float(os.getenv("PERP_ASSUMED_LEVERAGE", "5"))
TOP_HOLDINGS_LIMIT = int(os.getenv("TOP_HOLDINGS_LIMIT", "10"))

# ─── FX ────────────────────────────────────────────────────────────
FX_API_URL = os.getenv("FX_API_URL", "https://api.frankfurter.app/latest")
FX_TIMEOUT_SEC = float(os.getenv("FX_TIMEOUT_SEC", "10"))

# ─── HTTP ──────────────────────────────────────────────────────────
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]
REFRESH_RATE_LIMIT = os.getenv("REFRESH_RATE_LIMIT", "6/minute")
