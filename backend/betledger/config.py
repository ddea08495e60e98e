"""Configuration management using Pydantic Settings."""

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from betledger.services.feed.config import FeedConfig

logger = logging.getLogger(__name__)

ReversalFormula = Literal["legacy", "symmetric"]


class PlacementConfig(BaseModel):
    """Wager acceptance limits."""

    fancy_min_stake: Decimal = Decimal("100")
    fancy_max_stake: Decimal = Decimal("500000")
    require_live_market: bool = True  # reject when the feed has no prices
    max_snapshot_retries: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def check_stake_bounds(self) -> "PlacementConfig":
        if self.fancy_min_stake > self.fancy_max_stake:
            raise ValueError("fancy_min_stake must not exceed fancy_max_stake")
        return self


class SettlementConfig(BaseModel):
    """Settlement pass parameters."""

    batch_size: int = Field(default=50, ge=1, le=50)
    batch_timeout_seconds: float = Field(default=10.0, gt=0)
    interval_minutes: int = Field(default=5, ge=1)
    reversal_formula: ReversalFormula = "legacy"


SECTION_NAMES = ("placement", "settlement", "feed")


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")

    environment: str = "development"
    log_level: str = "INFO"
    database_url: str = ""
    logfire_token: str = ""

    # Nested configuration sections
    placement: PlacementConfig = Field(default_factory=PlacementConfig)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BETLEDGER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    def get_database_url(self) -> str:
        """Database URL, defaulting to a SQLite file inside the data directory."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir / 'betledger.db'}"

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m betledger init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in SECTION_NAMES:
                overrides = yaml_config.get(section_name)
                if overrides:
                    self._merge_section(section_name, overrides)

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise

    def _merge_section(self, name: str, overrides: dict) -> None:
        """Rebuild one section with YAML values layered over the current ones."""
        current = getattr(self, name)
        merged = {**current.model_dump(), **overrides}
        setattr(self, name, type(current).model_validate(merged))


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
