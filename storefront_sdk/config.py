"""Centralized configuration for the storefront SDK and console."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Backend
STORE_BASE_URL = os.getenv("STORE_BASE_URL", "http://127.0.0.1:8085")
STORE_API_KEY = os.getenv("STORE_API_KEY") or None
STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT", "10"))

# Preferences (theme, list sorting) persisted between console sessions
STORE_PREFS_PATH = Path(os.getenv("STORE_PREFS_PATH", "~/.storefront/prefs.json")).expanduser()

# Logging
STORE_LOG_LEVEL = os.getenv("STORE_LOG_LEVEL", "INFO").upper()
STORE_LOG_DIR = os.getenv("STORE_LOG_DIR", "logs")

# Quantity bounds enforced by callers before pricing a line
MIN_QUANTITY = 1
MAX_QUANTITY = int(os.getenv("MAX_QUANTITY", "999"))
