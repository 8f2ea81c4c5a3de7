"""Environment configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=True)

DB_PATH = Path(os.environ.get("CLINIC_DB_PATH", Path(__file__).parent / "clinic_data.db"))

SYNC_URL = os.environ.get("CLINIC_SYNC_URL", "https://www.ganesha.vip/api/clinic")
SYNC_DEBOUNCE_SECONDS = float(os.environ.get("CLINIC_SYNC_DEBOUNCE_SECONDS", "2.0"))
SYNC_SUCCESS_RESET_SECONDS = float(os.environ.get("CLINIC_SYNC_SUCCESS_RESET_SECONDS", "3.0"))
SYNC_TIMEOUT_SECONDS = float(os.environ.get("CLINIC_SYNC_TIMEOUT_SECONDS", "10"))

# Prefixed to phone numbers that carry no country code (11 digits or fewer)
COUNTRY_CODE = os.environ.get("CLINIC_COUNTRY_CODE", "55")

# "allow" keeps double-booked slots, "reject" refuses a second booking
BOOKING_POLICY = os.environ.get("CLINIC_BOOKING_POLICY", "allow")

LOG_LEVEL = os.environ.get("CLINIC_LOG_LEVEL", "WARNING")
