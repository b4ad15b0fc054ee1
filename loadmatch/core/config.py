"""
Configuration management for the load matching platform.

Handles loading and accessing:
- Business policy (config.yaml): pricing rates, scoring weights, matching rules
- LLM configuration (llms.json)
- Environment variables
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class LLMModelConfig(BaseModel):
    """Configuration for a specific LLM model."""

    provider: str
    model: str
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout_seconds: int = 5


class AgentLLMConfig(BaseModel):
    """LLM configuration for a specific agent."""

    primary_model: LLMModelConfig
    fallback_model: Optional[LLMModelConfig] = None
    reasoning: str
    system_prompt_template: str
    tools_enabled: list[str] = Field(default_factory=list)


class PricingConfig(BaseModel):
    """
    Rates and multipliers for the factor-based pricing algorithm.

    Every value here is policy; a new algorithm version is a new instance.
    """

    algorithm_version: str = "v2.0-factors"
    currency: str = "TRY"

    # Base rates
    distance_rate: Decimal = Decimal("3.5")
    weight_rate: Decimal = Decimal("0.15")

    # Volume
    large_volume_threshold_m3: Decimal = Decimal("20")
    volume_factor: Decimal = Decimal("1.15")

    # Cargo handling
    hazardous_factor: Decimal = Decimal("1.5")
    refrigerated_factor: Decimal = Decimal("1.3")
    special_requirement_step: Decimal = Decimal("0.05")

    # Time of pickup
    weekend_factor: Decimal = Decimal("1.25")
    peak_hours_factor: Decimal = Decimal("1.15")
    peak_hours: list[tuple[int, int]] = Field(default_factory=lambda: [(8, 10), (17, 19)])

    # Urgency (hours until pickup)
    urgent_hours: int = 24
    urgent_factor: Decimal = Decimal("1.4")
    soon_hours: int = 48
    soon_factor: Decimal = Decimal("1.2")

    # Load-type multipliers for the market price estimate in pricing snapshots
    market_load_type_multipliers: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "hazardous": Decimal("1.4"),
            "refrigerated": Decimal("1.3"),
            "oversized": Decimal("1.5"),
            "fragile": Decimal("1.2"),
            "general_cargo": Decimal("1.0"),
        }
    )
    market_default_multiplier: Decimal = Decimal("1.1")

    # Advisory bounds, relative to the deterministic price
    advisor_min_ratio: Decimal = Decimal("0.5")
    advisor_max_ratio: Decimal = Decimal("2.0")
    advisor_timeout_seconds: float = 5.0


class ScoringConfig(BaseModel):
    """Weights and brackets for driver/load compatibility scoring."""

    distance_weight: Decimal = Decimal("0.30")
    rating_weight: Decimal = Decimal("0.25")
    experience_weight: Decimal = Decimal("0.20")
    availability_weight: Decimal = Decimal("0.15")
    special_requirements_weight: Decimal = Decimal("0.10")

    # (max km, score) checked in order; anything further gets distance_floor_score
    distance_brackets: list[tuple[float, int]] = Field(
        default_factory=lambda: [
            (10, 100),
            (50, 90),
            (100, 80),
            (200, 70),
            (300, 60),
            (400, 50),
            (500, 40),
        ]
    )
    distance_floor_score: int = 20
    unknown_location_score: int = 0

    new_driver_rating_score: int = 60
    rating_scale: Decimal = Decimal("20")

    # (min years, score) checked in order; below all brackets gets experience_floor_score
    experience_brackets: list[tuple[int, int]] = Field(
        default_factory=lambda: [(10, 100), (5, 90), (3, 80), (1, 70)]
    )
    experience_floor_score: int = 50

    late_start_penalty: int = 30
    early_finish_penalty: int = 30
    off_shift_penalty: int = 20
    missing_adr_penalty: int = 50

    minimum_match_score: Decimal = Decimal("50")
    max_workers: int = 8


class MatchingConfig(BaseModel):
    """Rules for candidate search and match lifetime."""

    search_radius_km: float = 500
    window_padding_hours: int = 2
    match_ttl_hours: int = 24
    default_max_matches: int = 10
    sweep_interval_seconds: int = 300


class EnvironmentSettings(BaseSettings):
    """Environment variables configuration."""

    # LLM Provider API Keys
    anthropic_api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")

    # Logging
    log_level: str = Field("INFO", alias="LOADMATCH_LOG_LEVEL")
    log_json: bool = Field(True, alias="LOADMATCH_LOG_JSON")

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


class ConfigManager:
    """
    Central configuration manager for the load matching platform.

    Loads and provides access to:
    - Business policy from config/config.yaml
    - LLM configuration from config/llms.json
    - Environment variables from .env
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_dir: Optional path to config directory. Defaults to project root/config.
        """
        if config_dir is None:
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = config_dir
        self._business_config: Optional[dict[str, Any]] = None
        self._llm_config: Optional[dict[str, Any]] = None
        self._env_settings: Optional[EnvironmentSettings] = None

    @property
    def business_config(self) -> dict[str, Any]:
        """Load and return business configuration from config.yaml."""
        if self._business_config is None:
            config_path = self.config_dir / "config.yaml"
            with open(config_path, "r") as f:
                self._business_config = yaml.safe_load(f) or {}
        return self._business_config

    @property
    def llm_config(self) -> dict[str, Any]:
        """Load and return LLM configuration from llms.json."""
        if self._llm_config is None:
            config_path = self.config_dir / "llms.json"
            with open(config_path, "r") as f:
                self._llm_config = json.load(f)
        return self._llm_config

    @property
    def env(self) -> EnvironmentSettings:
        """Load and return environment settings."""
        if self._env_settings is None:
            self._env_settings = EnvironmentSettings()
        return self._env_settings

    def get_agent_llm_config(self, agent_name: str) -> AgentLLMConfig:
        """
        Get LLM configuration for a specific agent.

        Args:
            agent_name: Name of the agent (e.g., "pricing_advisor")

        Returns:
            AgentLLMConfig with the agent's LLM settings

        Raises:
            KeyError: If agent configuration is not found
        """
        agent_assignments = self.llm_config.get("agent_assignments", {})
        if agent_name not in agent_assignments:
            raise KeyError(f"No LLM configuration found for agent: {agent_name}")

        agent_config = agent_assignments[agent_name]
        return AgentLLMConfig(**agent_config)

    def get_api_key(self, provider: str) -> Optional[str]:
        """
        Get API key for a specific provider.

        Args:
            provider: Provider name ("anthropic" or "openai")

        Returns:
            API key or None if not set
        """
        provider_map = {
            "anthropic": self.env.anthropic_api_key,
            "openai": self.env.openai_api_key,
        }
        return provider_map.get(provider.lower())

    def get_pricing_config(self) -> PricingConfig:
        """Get the pricing algorithm parameters from business config."""
        return PricingConfig(**self.business_config.get("pricing", {}))

    def get_scoring_config(self) -> ScoringConfig:
        """Get driver scoring weights and brackets from business config."""
        return ScoringConfig(**self.business_config.get("scoring", {}))

    def get_matching_config(self) -> MatchingConfig:
        """Get candidate search and match lifetime rules from business config."""
        return MatchingConfig(**self.business_config.get("matching", {}))

    def get_vehicle_rates(self) -> dict[str, Any]:
        """Get per-kg cost overrides for vehicle classes from business config."""
        return self.business_config.get("vehicles", {}).get("rates", {})


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        ConfigManager singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
