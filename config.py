import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        session_secret: str,
        session_cookie_name: str,
        session_max_age_secs: int,
        bcrypt_rounds: int,
        default_account_name: str,
        default_currency: str,
        recent_limit: int,
    ) -> None:
        self.database_url = database_url
        self.session_secret = session_secret
        self.session_cookie_name = session_cookie_name
        self.session_max_age_secs = session_max_age_secs
        self.bcrypt_rounds = bcrypt_rounds
        self.default_account_name = default_account_name
        self.default_currency = default_currency
        self.recent_limit = recent_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _default_database_url() -> str:
    url = os.getenv("LEDGER_DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{_ensure_data_dir() / 'ledger.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    session_secret = os.getenv(
        "LEDGER_SESSION_SECRET",
        "3f1d0c6a9b7e48d2a5c4e8f19b2d7a60c1e5f3a8d9b4c2e7f6a1d0b9c8e7f5a4",
    )
    return Settings(
        database_url=_default_database_url(),
        session_secret=session_secret,
        session_cookie_name=os.getenv("LEDGER_SESSION_COOKIE", "ledger_session"),
        session_max_age_secs=int(os.getenv("LEDGER_SESSION_MAX_AGE_SECS", "2592000")),
        bcrypt_rounds=int(os.getenv("LEDGER_BCRYPT_ROUNDS", "10")),
        default_account_name=os.getenv("LEDGER_DEFAULT_ACCOUNT_NAME", "Cash"),
        default_currency=os.getenv("LEDGER_DEFAULT_CURRENCY", "USD").upper(),
        recent_limit=int(os.getenv("LEDGER_RECENT_LIMIT", "5")),
    )
