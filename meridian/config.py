# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Executor Configuration

Example:
    from meridian import ExecutorConfig

    config = ExecutorConfig(backend="interpreter")
    executor = GraphExecutor(graph, weights, config=config)

    # Or pick settings up from MERIDIAN_* environment variables
    config = ExecutorConfig.from_env()
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ConfigurationError


class BackendMode(Enum):
    """How the executor chooses between execution paths."""

    AUTO = "auto"  # Accelerated when available and applicable
    INTERPRETER = "interpreter"  # Always run node by node
    ACCELERATED = "accelerated"  # Always run the compiled model


PREFERENCES = ("fast_single_answer", "sustained_speed", "low_power")


@dataclass
class ExecutorConfig:
    """
    Configuration for graph execution.

    Attributes:
        backend: Execution path selection ("auto", "interpreter", "accelerated")
        preference: Accelerated compilation preference
        verbosity: Structured logger verbosity (0-4), None keeps the current level
    """

    backend: str = "auto"
    preference: str = "fast_single_answer"
    verbosity: Optional[int] = None

    @classmethod
    def from_env(cls) -> "ExecutorConfig":
        """Build a config from MERIDIAN_BACKEND, MERIDIAN_PREFERENCE and MERIDIAN_VERBOSITY."""
        config = cls()
        config.backend = os.environ.get("MERIDIAN_BACKEND", config.backend)
        config.preference = os.environ.get("MERIDIAN_PREFERENCE", config.preference)

        verbosity = os.environ.get("MERIDIAN_VERBOSITY")
        if verbosity is not None:
            try:
                config.verbosity = int(verbosity)
            except ValueError:
                raise ConfigurationError(
                    "verbosity must be an integer",
                    config_key="MERIDIAN_VERBOSITY",
                    config_value=verbosity,
                )

        config.validate()
        return config

    def get_backend_mode(self) -> BackendMode:
        """Get backend mode enum."""
        try:
            return BackendMode(self.backend.lower())
        except ValueError:
            raise ConfigurationError(
                f"unknown backend mode '{self.backend}'",
                config_key="backend",
                config_value=self.backend,
            )

    def validate(self) -> None:
        """Raise ConfigurationError for out-of-range settings."""
        self.get_backend_mode()

        if self.preference not in PREFERENCES:
            raise ConfigurationError(
                f"unknown preference '{self.preference}'",
                config_key="preference",
                config_value=self.preference,
            )

        if self.verbosity is not None and not 0 <= self.verbosity <= 4:
            raise ConfigurationError(
                "verbosity must be between 0 and 4",
                config_key="verbosity",
                config_value=str(self.verbosity),
            )
