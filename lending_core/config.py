"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""

    # Decimal math configuration
    math_precision: int = 19  # Significant digits for intermediate results
    default_currency: str = "USD"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Allocation configuration
    default_allocation_order: str = "penalty,fee,interest,principal"
    allocation_spill_to_next_installment: bool = True
    allocation_allow_advance_payment: bool = True

    # Calendar configuration
    default_reschedule_type: str = "move_to_next_working_day"
    non_working_weekdays: str = "6,7"  # ISO weekdays, Saturday and Sunday

    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False

    @property
    def allocation_components(self) -> List[str]:
        """Allocation order as a list of component names"""
        return [part.strip().lower() for part in self.default_allocation_order.split(",") if part.strip()]

    @property
    def non_working_weekday_numbers(self) -> List[int]:
        """Non-working days as ISO weekday numbers"""
        return [int(part) for part in self.non_working_weekdays.split(",") if part.strip()]


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
