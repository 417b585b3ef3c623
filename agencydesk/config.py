import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agencydesk.db")

# Identity provider (Supabase Auth) - tokens are HS256 JWTs signed with the project secret
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
if not SUPABASE_JWT_SECRET:
    import warnings

    warnings.warn(
        "SUPABASE_JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    SUPABASE_JWT_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Auxiliary backend that talks to the payment processor (checkout sessions + verification)
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:4242").rstrip("/")
CHECKOUT_PAYEE_NAME = os.getenv("CHECKOUT_PAYEE_NAME", "Anthem InfoTech Pvt Ltd")

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Every store / processor call is abandoned after this many seconds
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "5"))

# Payments due within this many days (inclusive) show up as upcoming reminders
REMINDER_WINDOW_DAYS = int(os.getenv("REMINDER_WINDOW_DAYS", "10"))

# List pagination
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))
