import os

# App configuration with environment variable support
SECRET_KEY = os.getenv("COREPASS_SECRET_KEY", "change-me-in-production")  # Flask session key
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///corepass.db")  # Use relative path for local dev
STORE_BACKEND = os.getenv("COREPASS_STORE", "sql")  # "sql" or "memory" (previews/demos)
SNAPSHOT_POLL_SECONDS = float(os.getenv("COREPASS_SNAPSHOT_POLL_SECONDS", "0.5"))  # Live query poll interval
SCHOOL_ID = os.getenv("COREPASS_SCHOOL_ID", "")  # Attached to new pass requests when set

# Pass request defaults
DEFAULT_DURATION = int(os.getenv("COREPASS_DEFAULT_DURATION", "10"))  # Minutes
DURATION_OPTIONS = [5, 10, 15, 20, 30]
DEFAULT_ROOMS = [r.strip() for r in os.getenv("COREPASS_DEFAULT_ROOMS", "Library,Nurse,Office,Gym").split(",") if r.strip()]

# Google OAuth Configuration
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")

# Preview/test identity override: bypasses Google sign-in entirely
TEST_UID = os.getenv("COREPASS_TEST_UID", "")
