# =============================================================================
# Pasture Biomass Estimator - Centralized Configuration
# =============================================================================
# Provides a single Config dataclass containing all tunable parameters for
# the local model, the remote vision client and the HTTP host. Parameters are
# overridable via environment variables with the BIOMASS_ prefix
# (e.g., BIOMASS_VISION_MODEL=gpt-4o).
# =============================================================================

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import torch

# Project root directory (where this file lives)
_PROJECT_ROOT = str(Path(__file__).parent.resolve())


def _detect_device() -> str:
    """
    Auto-detect the best available compute device.

    Returns:
        str: "cuda" on NVIDIA GPUs, "mps" on Apple Silicon, "cpu" as fallback.
    """
    if torch.cuda.is_available():
        return "cuda"
    elif torch.backends.mps.is_available():
        return "mps"
    return "cpu"


def _parse_api_keys(raw: str) -> Tuple[str, ...]:
    """Split a comma-separated key list, dropping blanks."""
    return tuple(key.strip() for key in raw.split(",") if key.strip())


@dataclass
class Config:
    """
    Centralized configuration for the pasture biomass estimator.

    All fields can be overridden via environment variables prefixed with BIOMASS_.
    """

    # -- Networking --
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    # -- Local Model (PyTorch) --
    model_path: str = field(
        default_factory=lambda: os.path.join(_PROJECT_ROOT, "models", "fold0_best.pth")
    )
    device: str = field(default_factory=_detect_device)

    # -- Remote Vision Model (OpenAI-compatible chat completions) --
    vision_endpoint: str = "https://models.inference.ai.azure.com"
    vision_model: str = "gpt-4o"
    vision_api_keys: str = ""
    vision_timeout_seconds: float = 60.0
    vision_temperature: float = 0.3
    vision_max_tokens: int = 1000
    response_language: str = "English"

    # -- Retry Policy --
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0

    # -- Logging --
    log_level: str = "INFO"

    # -- Derived (computed post-init) --
    server_url: str = field(init=False)
    api_keys: Tuple[str, ...] = field(init=False)

    def __post_init__(self):
        """Apply environment variable overrides and compute derived fields."""
        self._apply_env_overrides()
        self.server_url = f"http://{self.server_host}:{self.server_port}"
        self.api_keys = _parse_api_keys(self.vision_api_keys)

    def _apply_env_overrides(self):
        """
        Override config fields from environment variables.

        Looks for BIOMASS_<FIELD_NAME_UPPERCASE> environment variables and
        applies them with appropriate type conversion.
        """
        field_types = {
            "server_host": str,
            "server_port": int,
            "model_path": str,
            "device": str,
            "vision_endpoint": str,
            "vision_model": str,
            "vision_api_keys": str,
            "vision_timeout_seconds": float,
            "vision_temperature": float,
            "vision_max_tokens": int,
            "response_language": str,
            "max_retries": int,
            "retry_backoff_seconds": float,
            "log_level": str,
        }
        for field_name, field_type in field_types.items():
            env_key = f"BIOMASS_{field_name.upper()}"
            env_value = os.environ.get(env_key)
            if env_value is not None:
                setattr(self, field_name, field_type(env_value))


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Return the singleton Config instance, creating it on first call.

    Returns:
        Config: The global configuration object.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance
