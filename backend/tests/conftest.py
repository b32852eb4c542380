import os

# Keep module-level engine creation off the production driver during tests.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORE_RETRY_BACKOFF_SECONDS", "0")
