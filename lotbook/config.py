"""
Configuration management for Lotbook.

Centralizes all configuration from environment variables with sensible defaults.
This is the SINGLE SOURCE OF TRUTH for all application configuration.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

LOT_METHODS = ("fifo", "lifo", "hifo")


@dataclass
class Config:
    """
    Application configuration loaded from environment variables.

    Optional:
        LOTBOOK_DB_PATH: Path to SQLite database
        LOTBOOK_USER_ID: User the CLI records data for
        LOTBOOK_LOT_METHOD: Default lot selection method (fifo, lifo, hifo)
        LOTBOOK_LONG_TERM_DAYS: Holding period above which a closure is long-term
        LOTBOOK_FX_EPSILON: Tolerance when reconciling cash movement currency values
        LOTBOOK_HOME_CURRENCY / LOTBOOK_TRADING_CURRENCY: Funding currencies
        LOTBOOK_LOG_LEVEL: Logging level for the CLI
    """

    # Storage
    db_path: Path = field(
        default_factory=lambda: Path(
            os.getenv("LOTBOOK_DB_PATH", "./data/lotbook.db")
        )
    )
    user_id: str = field(
        default_factory=lambda: os.getenv("LOTBOOK_USER_ID", "local")
    )

    # ========================================================================
    # Lot accounting
    # ========================================================================
    lot_method: str = field(
        default_factory=lambda: os.getenv("LOTBOOK_LOT_METHOD", "fifo").lower()
    )
    long_term_days: int = field(
        default_factory=lambda: int(
            os.getenv("LOTBOOK_LONG_TERM_DAYS", "365")
        )
    )

    # ========================================================================
    # Funding
    # CRITICAL: epsilon is absolute, in trading currency units
    # ========================================================================
    fx_epsilon: Decimal = field(
        default_factory=lambda: Decimal(
            os.getenv("LOTBOOK_FX_EPSILON", "0.01")
        )
    )
    home_currency: str = field(
        default_factory=lambda: os.getenv("LOTBOOK_HOME_CURRENCY", "USD").upper()
    )
    trading_currency: str = field(
        default_factory=lambda: os.getenv("LOTBOOK_TRADING_CURRENCY", "USD").upper()
    )

    log_level: str = field(
        default_factory=lambda: os.getenv("LOTBOOK_LOG_LEVEL", "WARNING").upper()
    )

    def __post_init__(self) -> None:
        """Convert string paths and numbers to their typed forms if needed."""
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if not isinstance(self.fx_epsilon, Decimal):
            self.fx_epsilon = Decimal(str(self.fx_epsilon))

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: If any value is out of range.
        """
        from lotbook.core.exceptions import ConfigError

        if self.lot_method not in LOT_METHODS:
            raise ConfigError(
                f"Invalid LOTBOOK_LOT_METHOD: {self.lot_method!r}. "
                f"Must be one of: {', '.join(LOT_METHODS)}"
            )
        if self.long_term_days <= 0:
            raise ConfigError(
                f"LOTBOOK_LONG_TERM_DAYS must be positive, got {self.long_term_days}"
            )
        if self.fx_epsilon < 0:
            raise ConfigError(
                f"LOTBOOK_FX_EPSILON cannot be negative, got {self.fx_epsilon}"
            )

    def ensure_directories(self) -> None:
        """Create data directories if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance
config = Config()
