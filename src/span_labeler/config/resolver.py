"""Configuration resolution with precedence handling.

Sources are merged in this order, later ones winning:
Defaults < ``.env`` file < Environment < Programmatic
"""

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from span_labeler.config.settings import SETTINGS_FIELDS, SpanLabelerSettings
from span_labeler.config.types import ConfigOrigin, FrozenConfig, ResolvedConfig
from span_labeler.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigResolver:
    """Resolves configuration from every source and records each field's origin."""

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        env_file: str | Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources with proper precedence.

        Args:
            programmatic: Overrides with the highest precedence. Unknown keys
                are ignored.
            env_file: Optional ``.env`` file read beneath real environment
                variables.

        Returns:
            ResolvedConfig with merged values and source tracking.

        Raises:
            ConfigurationError: If the env file is missing or any value fails
                validation.
        """
        origin: dict[str, ConfigOrigin] = {}

        # Step 1: Start with schema defaults
        merged: dict[str, Any] = {}
        for field in SETTINGS_FIELDS:
            merged[field] = SpanLabelerSettings.model_fields[field].default
            origin[field] = "default"

        # Step 2: Environment, with the .env file beneath it
        if env_file is not None and not Path(env_file).is_file():
            raise ConfigurationError(f"Environment file not found: {env_file}")
        try:
            env_only = SpanLabelerSettings()
            loaded = (
                SpanLabelerSettings(_env_file=env_file)
                if env_file is not None
                else env_only
            )
        except ValidationError as e:
            raise ConfigurationError(f"Environment configuration error: {e}") from e

        for field in loaded.model_fields_set:
            merged[field] = getattr(loaded, field)
            origin[field] = "env" if field in env_only.model_fields_set else "file"

        # Step 3: Apply programmatic overrides
        for field, value in (programmatic or {}).items():
            if field in merged:
                merged[field] = value
                origin[field] = "programmatic"

        # Step 4: Validate the final configuration
        try:
            validated = SpanLabelerSettings.model_validate(merged)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        resolved = ResolvedConfig(**validated.to_dict(), origin=origin)
        logger.debug("Resolved configuration: %s", resolved)
        return resolved


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    env_file: str | Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration once; see ``ConfigResolver.resolve``."""
    return ConfigResolver().resolve(programmatic, env_file=env_file)


def load_config(
    *, env_file: str | Path | None = None, **overrides: Any
) -> FrozenConfig:
    """Resolve configuration and freeze it for the pipeline."""
    return resolve_config(overrides, env_file=env_file).to_frozen()
