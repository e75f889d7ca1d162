import argparse
from functools import lru_cache
from typing import Sequence

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# zerolog numeric levels accepted by -l / LOG_LEVEL
LOG_LEVELS = {
    -1: "DEBUG",  # trace
    0: "DEBUG",
    1: "INFO",
    2: "WARNING",
    3: "ERROR",
    4: "CRITICAL",  # fatal
    5: "CRITICAL",  # panic
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: int = Field(default=3, alias="LOG_LEVEL", ge=-1, le=5)

    # Server
    run_address: str = Field(default="127.0.0.1:8081", alias="RUN_ADDRESS")
    trust_forwarded_for: bool = Field(default=False, alias="TRUST_FORWARDED_FOR")
    max_request_body: int = Field(default=1_048_576, alias="MAX_REQUEST_BODY", gt=0)  # after gzip inflation

    # Persistence: mongodb://... or memory://
    database_uri: str = Field(default="mongodb://127.0.0.1:27017/bonusmart", alias="DATABASE_URI")
    mongodb_db_name: str = Field(default="bonusmart", alias="MONGODB_DB_NAME")

    # Accrual calculator
    accrual_system_address: str = Field(default="http://127.0.0.1:8080", alias="ACCRUAL_SYSTEM_ADDRESS")
    accrual_poll_interval: float = Field(default=1.0, alias="ACCRUAL_POLL_INTERVAL", gt=0)
    accrual_request_timeout: float = Field(default=5.0, alias="ACCRUAL_REQUEST_TIMEOUT", gt=0)
    accrual_workers: int = Field(default=16, alias="ACCRUAL_WORKERS", ge=1)
    accrual_resume_on_startup: bool = Field(default=True, alias="ACCRUAL_RESUME_ON_STARTUP")
    # the re-poll cron leaves younger orders to the process that accepted them
    accrual_resume_grace: float = Field(default=300.0, alias="ACCRUAL_RESUME_GRACE", ge=0)

    # Redis (arq re-poll worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Security
    bcrypt_rounds: int = Field(default=10, alias="BCRYPT_ROUNDS", ge=4, le=31)

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    @property
    def bind_host(self) -> str:
        host, _, _ = self.run_address.rpartition(":")
        return host or "127.0.0.1"

    @property
    def bind_port(self) -> int:
        _, _, port = self.run_address.rpartition(":")
        return int(port) if port else 8081

    @property
    def log_level_name(self) -> str:
        if self.debug:
            return "DEBUG"
        return LOG_LEVELS[self.log_level]


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bonusmart", description="Loyalty points accounting service")
    parser.add_argument("-a", dest="run_address", help="reads RUN_ADDRESS from flags")
    parser.add_argument("-d", dest="database_uri", help="reads DATABASE_URI from flags")
    parser.add_argument("-r", dest="accrual_system_address", help="reads ACCRUAL_SYSTEM_ADDRESS from flags")
    parser.add_argument("-debug", dest="debug", action="store_true", default=None,
                        help="set log level to debug, overrides -l")
    parser.add_argument("-l", dest="log_level", type=int, choices=sorted(LOG_LEVELS), help="set log level")
    return parser


def settings_from_args(argv: Sequence[str] | None = None, base: Settings | None = None) -> Settings:
    """Overlay command line flags on top of env-derived settings."""
    args = build_arg_parser().parse_args(argv)
    settings = base or get_settings()
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    if not overrides:
        return settings
    return settings.model_copy(update=overrides)


@lru_cache
def get_settings() -> Settings:
    return Settings()
