"""
Runtime configuration.

Everything is read from the environment once, when the app is built. An empty
INTAKE_ENRICHMENT_URL keeps suggestions fully local.
"""

import logging
import os

from .rules import ENRICHMENT_BATCH_SIZE

OVERLOAD_FIX_POLICIES = ("reduce-load", "extend-slots", "none")


class Settings:
    def __init__(self, **overrides):
        self.enrichment_url = os.getenv("INTAKE_ENRICHMENT_URL", "").strip()
        self.enrichment_api_key = os.getenv("INTAKE_ENRICHMENT_API_KEY", "")
        self.enrichment_timeout = float(os.getenv("INTAKE_ENRICHMENT_TIMEOUT", "8"))
        self.enrichment_batch = int(os.getenv("INTAKE_ENRICHMENT_BATCH", str(ENRICHMENT_BATCH_SIZE)))
        self.overload_fix_policy = os.getenv("INTAKE_OVERLOAD_FIX_POLICY", "reduce-load")
        self.log_level = os.getenv("INTAKE_LOG_LEVEL", "INFO").upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"unknown setting: {key}")
            setattr(self, key, value)

        if self.overload_fix_policy not in OVERLOAD_FIX_POLICIES:
            raise ValueError(
                f"INTAKE_OVERLOAD_FIX_POLICY must be one of {', '.join(OVERLOAD_FIX_POLICIES)}, "
                f"got {self.overload_fix_policy!r}"
            )

    @property
    def enrichment_configured(self) -> bool:
        return bool(self.enrichment_url)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
