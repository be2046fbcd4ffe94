# conftest.py
import os

# Test environment: in-memory SQLite and in-process slot locks.
# Must run before anything imports app.config.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("SLOT_LOCK_BACKEND", "local")
os.environ.setdefault("SLOT_LOCK_TIMEOUT_SECONDS", "2")
