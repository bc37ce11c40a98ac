import os

# must be set before config.get_settings() is first called
os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite://")
os.environ.setdefault("LEDGER_BCRYPT_ROUNDS", "4")
os.environ.setdefault("LEDGER_SESSION_SECRET", "test-session-secret")
