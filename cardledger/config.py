"""
cardledger configuration.

Settings are resolved with a fixed priority order:

    1. Explicit overrides (CLI options)          highest
    2. Environment variables
    3. YAML config file
    4. Built-in defaults                         lowest

Config file (YAML):

    journal: .cardledger/journal.jsonl
    key: .cardledger/owner.pem
    log_level: WARNING

Environment variable mapping:
    CARDLEDGER_JOURNAL    -> journal
    CARDLEDGER_KEY        -> key
    CARDLEDGER_LOG_LEVEL  -> log_level
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping, Optional

import yaml

from cardledger.core.exceptions import ConfigError

DEFAULT_DIR     = Path(".cardledger")
DEFAULT_JOURNAL = DEFAULT_DIR / "journal.jsonl"
DEFAULT_KEY     = DEFAULT_DIR / "owner.pem"

_ENV_PREFIX = "CARDLEDGER_"


@dataclass(frozen=True)
class LedgerConfig:
    """Where the journal and signing key live, and how loudly to log."""

    journal:   Path = DEFAULT_JOURNAL
    key:       Path = DEFAULT_KEY
    log_level: str  = "WARNING"

    @classmethod
    def from_yaml(cls, config_file: Path) -> "LedgerConfig":
        """Load settings from a YAML mapping. Raises ConfigError."""
        config_file = Path(config_file)
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError("Cannot read config file", {"path": config_file, "error": exc}) from exc
        except yaml.YAMLError as exc:
            raise ConfigError("Config file is not valid YAML", {"path": config_file}) from exc

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a mapping", {"path": config_file})
        return cls().merged(data, source=str(config_file))

    def merged(self, values: Mapping[str, object], source: str = "overrides") -> "LedgerConfig":
        """Copy with every non-None value in values applied. Raises ConfigError."""
        known   = {f.name for f in fields(self)}
        unknown = set(values) - known
        if unknown:
            raise ConfigError(
                "Unknown configuration keys",
                {"source": source, "keys": ", ".join(sorted(unknown))},
            )

        changes = {}
        for name, value in values.items():
            if value is None:
                continue
            if name in ("journal", "key"):
                changes[name] = Path(str(value))
            else:
                changes[name] = _parse_log_level(value, source)
        return replace(self, **changes)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "LedgerConfig":
        environ = os.environ if environ is None else environ
        values  = {
            f.name: environ.get(_ENV_PREFIX + f.name.upper())
            for f in fields(self)
        }
        return self.merged(values, source="environment")


def _parse_log_level(value: object, source: str) -> str:
    level = str(value).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError("Unknown log level", {"source": source, "log_level": value})
    return level


def load_config(
    config_file: Optional[Path] = None,
    overrides:   Optional[Mapping[str, object]] = None,
    environ:     Optional[Mapping[str, str]] = None,
) -> LedgerConfig:
    """Resolve configuration: defaults < config file < environment < overrides."""
    config = LedgerConfig.from_yaml(config_file) if config_file else LedgerConfig()
    config = config.with_env(environ)
    if overrides:
        config = config.merged(overrides)
    return config


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=  getattr(logging, level.upper(), logging.WARNING),
        format= "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
