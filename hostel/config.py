import os


DATABASE_URL = os.getenv("HOSTEL_DATABASE_URL", "sqlite:///./data/hostel_booking.db")

# JWT configuration
SECRET_KEY = os.getenv("HOSTEL_SECRET_KEY", "change-me-hostel-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("HOSTEL_TOKEN_EXPIRE_MINUTES", "30"))

# Storage retry policy for the reservation coordinator
BOOKING_MAX_ATTEMPTS = int(os.getenv("HOSTEL_BOOKING_MAX_ATTEMPTS", "3"))
BOOKING_BACKOFF_SECONDS = float(os.getenv("HOSTEL_BOOKING_BACKOFF_SECONDS", "0.05"))

# Age after which a cached occupancy view is rebuilt from the rooms table
OCCUPANCY_RECONCILE_SECONDS = float(os.getenv("HOSTEL_OCCUPANCY_RECONCILE_SECONDS", "300"))

LOG_LEVEL = os.getenv("HOSTEL_LOG_LEVEL", "INFO")
