"""Operator settings.

Read once from ``KMCP_*`` environment variables when the operator starts.
"""

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from src.reconciler.retry import RetryPolicy
from src.reconciler.transport import DEFAULT_ADAPTER_IMAGE

ENV_PREFIX = "KMCP_"


class OperatorSettings(BaseModel):
    """Tunables for the MCPServer operator."""

    metrics_port: int = Field(default=9090, ge=1, le=65535)
    resync_interval: float = Field(default=60.0, gt=0)
    requeue_delay: float = Field(default=15.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)
    adapter_image: str = DEFAULT_ADAPTER_IMAGE

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OperatorSettings":
        """Build settings from ``KMCP_<FIELD>`` variables, e.g. ``KMCP_REQUEUE_DELAY``."""
        environ = os.environ if environ is None else environ
        values = {}
        for field in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{field.upper()}")
            if raw is not None:
                values[field] = raw
        return cls(**values)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )


_settings: OperatorSettings | None = None


def get_settings() -> OperatorSettings:
    """Get or create the process-wide settings."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = OperatorSettings.from_env()
    return _settings
