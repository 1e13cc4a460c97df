"""
Client configuration.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from logging.handlers import RotatingFileHandler
from typing import List, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONFIDENTIAL_"


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class ClientConfig:
    """
    Settings for building and submitting confidential-balance bundles.

    Defaults mirror the ledger program's constants.
    """
    contract_name: str = "con_confidential_token"
    decimals: int = 9
    max_pending_credits: int = 65536
    max_bundle_bytes: int = 65536
    submit_retries: int = 2
    log: LogConfig = field(default_factory=LogConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.contract_name.startswith("con_"):
            errors.append("Contract name must start with 'con_': {}".format(self.contract_name))

        if self.decimals < 0 or self.decimals > 18:
            errors.append("Invalid decimals: {}".format(self.decimals))

        if self.max_pending_credits < 1:
            errors.append("max_pending_credits must be at least 1")

        if self.max_bundle_bytes < 1024:
            errors.append("max_bundle_bytes must be at least 1024")

        if self.submit_retries < 0:
            errors.append("submit_retries cannot be negative")

        return errors

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ClientConfig":
        data = dict(data)
        log = data.pop("log", None)
        config = cls(**data)
        if log is not None:
            config.log = LogConfig(**log)
        return config

    def save(self, path: str) -> None:
        """Save configuration to file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info("Configuration saved to %s", path)

    @classmethod
    def load(cls, path: str) -> "ClientConfig":
        """Load configuration from file."""
        with open(path, "r") as f:
            data = json.load(f)

        config = cls.from_dict(data)
        logger.info("Configuration loaded from %s", path)
        return config

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "ClientConfig":
        """Defaults overridden by CONFIDENTIAL_* variables."""
        environ = os.environ if environ is None else environ
        config = cls()

        for name in ("contract_name",):
            value = environ.get(ENV_PREFIX + name.upper())
            if value:
                setattr(config, name, value)

        for name in ("decimals", "max_pending_credits", "max_bundle_bytes", "submit_retries"):
            value = environ.get(ENV_PREFIX + name.upper())
            if value:
                setattr(config, name, int(value))

        level = environ.get(ENV_PREFIX + "LOG_LEVEL")
        if level:
            config.log.level = level

        return config


def setup_logging(config: LogConfig) -> None:
    """Root logging for a client process: stderr, plus a rotating file if set."""
    handlers = [logging.StreamHandler()]
    if config.file:
        handlers.append(RotatingFileHandler(
            config.file, maxBytes=config.max_size_mb * 1024 * 1024, backupCount=config.backup_count
        ))
    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO), format=config.format, handlers=handlers
    )
