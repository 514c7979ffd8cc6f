import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# env var -> Settings field; values are passed through as strings and coerced by pydantic
ENV_FIELDS = {
    'DATABASE_URL': 'database_url',
    'TMDB_API_KEY': 'tmdb_api_key',
    'SESSION_TTL_DAYS': 'session_ttl_days',
    'SESSION_COOKIE_NAME': 'session_cookie_name',
    'SESSION_COOKIE_SECURE': 'session_cookie_secure',
    'SESSION_SWEEP_INTERVAL_SECONDS': 'session_sweep_interval_seconds',
    'SEED_ADMIN_USERNAME': 'seed_admin_username',
    'SEED_ADMIN_PASSWORD': 'seed_admin_password',
    'ALLOWED_ORIGINS': 'allowed_origins',
    'LOG_LEVEL': 'log_level',
    'LOG_FORMAT': 'log_format',
}


class Settings(BaseModel):
    database_url: str = 'sqlite+aiosqlite:///./couchstream.db'
    tmdb_api_key: Optional[str] = None

    session_ttl_days: int = 7
    session_cookie_name: str = 'couchstream_session'
    session_cookie_secure: bool = False
    session_sweep_interval_seconds: int = 3600

    # Seeded on first boot when the accounts table is empty. Override in any
    # deployment reachable by someone other than its owner.
    seed_admin_username: str = 'admin'
    seed_admin_password: str = 'admin123'

    # empty: no CORS middleware, pages and API are same-origin only
    allowed_origins: List[str] = []
    log_level: str = 'INFO'
    log_format: str = 'console'

    @field_validator('allowed_origins', mode='before')
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return [o.strip() for o in value.split(',') if o.strip()]
        return value

    @field_validator('tmdb_api_key', mode='before')
    @classmethod
    def blank_key_is_none(cls, value):
        return value or None

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from the environment (and a .env file, if present).

        Malformed values raise pydantic.ValidationError naming the field.
        """
        load_dotenv()
        values = {field: os.environ[name] for name, field in ENV_FIELDS.items() if name in os.environ}
        return cls(**values)
