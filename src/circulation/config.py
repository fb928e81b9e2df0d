"""Configuration management for the circulation engine.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

DEFAULT_DB_PATH = Path.home() / ".circulation" / "library.db"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Loan policy
    loan_period_days: int

    # Fees
    daily_fee: Decimal
    extended_daily_fee: Decimal
    fee_tier_days: int

    # Reporting
    overdue_threshold_days: int

    # Logging
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get("CIRCULATION_DB_PATH", str(DEFAULT_DB_PATH))

        return cls(
            db_path=Path(db_path_str).expanduser(),
            loan_period_days=int(os.environ.get("CIRCULATION_LOAN_PERIOD_DAYS", "14")),
            daily_fee=_decimal_env("CIRCULATION_DAILY_FEE", "1.00"),
            extended_daily_fee=_decimal_env("CIRCULATION_EXTENDED_DAILY_FEE", "2.00"),
            fee_tier_days=int(os.environ.get("CIRCULATION_FEE_TIER_DAYS", "30")),
            overdue_threshold_days=int(
                os.environ.get("CIRCULATION_OVERDUE_THRESHOLD_DAYS", "30")
            ),
            log_level=os.environ.get("CIRCULATION_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.loan_period_days < 1:
            errors.append("Loan period must be at least one day")
        if self.daily_fee < 0 or self.extended_daily_fee < 0:
            errors.append("Fee rates must not be negative")
        if self.fee_tier_days < 0:
            errors.append("Fee tier length must not be negative")
        if self.overdue_threshold_days < 0:
            errors.append("Overdue threshold must not be negative")
        if self.log_level not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.log_level}")

        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.environ.get(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {raw!r}") from None


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
