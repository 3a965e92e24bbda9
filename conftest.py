"""Root pytest configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables before tests run
_root = Path(__file__).parent
load_dotenv(_root / ".env")
load_dotenv(_root / ".env.local", override=True)

# No error reporting from test runs, and a fixed secret for auth
os.environ.pop("SENTRY_DSN", None)
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production-use-000000")
