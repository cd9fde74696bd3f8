import os

from dotenv import load_dotenv

# Load environment variables from .env file, if it exists
load_dotenv()

# Local calendar used for the daily attendance reset (IANA name)
ATTENDANCE_TIMEZONE = os.getenv("ATTENDANCE_TIMEZONE", "UTC")

# Single-shot position fix budget; the browser client uses the same 15s
GEOLOCATION_TIMEOUT_SECONDS = float(os.getenv("GEOLOCATION_TIMEOUT_SECONDS", "15"))

# Worker timesheets split hours into regular / overtime at this mark
REGULAR_HOURS_PER_DAY = float(os.getenv("REGULAR_HOURS_PER_DAY", "8"))

# Consecutive valid preview frames required before auto-capture
AUTO_CAPTURE_FRAMES = int(os.getenv("AUTO_CAPTURE_FRAMES", "10"))

# Default values can be provided if the env var is not set
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN")
