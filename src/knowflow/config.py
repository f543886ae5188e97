"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path.cwd()


# settings.yaml section -> {yaml key: Settings field}
_YAML_SECTIONS: dict[str, dict[str, str]] = {
    "ingestion": {
        "min_fragment_chars": "min_fragment_chars",
        "max_fragments": "max_fragments",
    },
    "synthesis": {
        "cluster_similarity": "cluster_similarity",
        "target_body_min_chars": "target_body_min_chars",
        "target_body_max_chars": "target_body_max_chars",
        "max_new_tags": "max_new_tags",
        "lexicon_path": "lexicon_path",
    },
    "skills": {
        "good_interval_thresholds": "good_interval_thresholds",
    },
    "stages": {
        "shape_threshold": "shape_threshold",
        "attack_fraction": "attack_fraction",
        "stabilize_fraction": "stabilize_fraction",
    },
    "scheduling": {
        "min_interval_days": "min_interval_days",
        "hard_factor": "hard_factor",
        "good_factor": "good_factor",
        "easy_factor": "easy_factor",
        "skill_staleness_days": "skill_staleness_days",
        "max_today_cards": "max_today_cards",
    },
    "storage": {
        "data_dir": "data_dir",
    },
}


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from config/settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        for section, keys in _YAML_SECTIONS.items():
            values = data.get(section) or {}
            for yaml_key, field_name in keys.items():
                flattened[field_name] = values.get(yaml_key)

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Engine tunables loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_prefix="KNOWFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ingestion
    min_fragment_chars: int = Field(default=6, ge=1)
    max_fragments: int = Field(default=64, ge=1)

    # Synthesis
    cluster_similarity: float = Field(default=0.35, ge=0.0, le=1.0)
    target_body_min_chars: int = Field(default=40, ge=1)
    target_body_max_chars: int = Field(default=600, ge=1)
    max_new_tags: int = Field(default=3, ge=0)
    lexicon_path: Path | None = Field(default=None)

    # Skills: a "good" outcome advances a level once the card interval exceeds
    # the entry for the current level. A list so sources replace, never merge.
    good_interval_thresholds: list[float] = Field(default_factory=lambda: [1.0, 3.0, 7.0])

    # Direction stages
    shape_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    attack_fraction: float = Field(default=0.5, ge=0.0, le=1.0)
    stabilize_fraction: float = Field(default=0.75, ge=0.0, le=1.0)

    # Scheduling
    min_interval_days: float = Field(default=1.0, gt=0.0)
    hard_factor: float = Field(default=0.6, gt=0.0, lt=1.0)
    good_factor: float = Field(default=2.5, gt=1.0)
    easy_factor: float = Field(default=3.5, gt=1.0)
    skill_staleness_days: float = Field(default=7.0, ge=0.0)
    max_today_cards: int = Field(default=20, ge=1)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)
    data_dir: Path | None = Field(default=None)

    @property
    def vault_dir(self) -> Path:
        d = self.data_dir or self.project_root / "data"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
