"""Builds the service Config from an optional JSON file plus the environment.

Precedence, lowest first: model defaults, the JSON file, ``.env``, then the
process environment. ``.env`` never overrides variables that are already set.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv

from config.models import Config, NetworkConfig
from core.exceptions import UnknownNetworkError


DEFAULT_CONFIG_PATH = "./config.json"
DEFAULT_ENV_FILE = "./.env"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _as_list(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


_KIND = {int: "an integer", float: "a number", _as_bool: "a boolean"}

# env var -> (section, field, converter)
ENV_OVERRIDES: Dict[str, tuple] = {
    "LEDGER_PAGE_LIMIT": ("ledger", "page_limit", int),
    "LEDGER_REQUEST_TIMEOUT_SECONDS": ("ledger", "request_timeout_seconds", int),
    "SCAN_TIMEOUT_SECONDS": ("sync", "scan_timeout_seconds", float),
    "FORCE_END_TIMEOUT_SECONDS": ("sync", "force_end_timeout_seconds", float),
    "LOCK_TTL_SECONDS": ("sync", "lock_ttl_seconds", float),
    "IDLE_UPDATE_INTERVAL_SECONDS": ("sync", "idle_update_interval_seconds", float),
    "ENRICHMENT_MAX_CONCURRENT_QUERIES": ("enrichment", "max_concurrent_queries", int),
    "ENRICHMENT_REQUEST_TIMEOUT_SECONDS": ("enrichment", "request_timeout_seconds", int),
    "STORE_BACKEND": ("store", "backend", str.lower),
    "REDIS_URL": ("store", "redis_url", str),
    "STORE_WRITE_ATTEMPTS": ("store", "write_attempts", int),
    "REGISTRY_NFT_SOURCE": ("registry", "nft", str),
    "REGISTRY_TOKEN_SOURCE": ("registry", "token", str),
    "APP_ENV": ("app", "env", str),
    "APP_HOST": ("app", "host", str),
    "APP_PORT": ("app", "port", int),
    "APP_DEBUG": ("app", "debug", _as_bool),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FORMAT": ("logging", "format", str.lower),
    "CORS_ALLOWED_ORIGINS": ("cors", "allowed_origins", _as_list),
}

# <NETWORK>_FCD_URL and <NETWORK>_LCD_URL, e.g. TESTNET_LCD_URL
NETWORK_URL_FIELDS = {"FCD_URL": "fcd_url", "LCD_URL": "lcd_url"}


def _convert(env_var: str, raw: str, converter: Callable[[str], Any]) -> Any:
    try:
        return converter(raw)
    except ValueError:
        kind = _KIND.get(converter, "valid")
        raise ValueError(f"Invalid {env_var}: {raw!r} is not {kind}") from None


class ConfigurationManager:
    """Loads and caches the validated service configuration.

    Attributes:
        config_path: JSON file to read. A path passed explicitly must exist;
            the default one may be absent since every section has defaults.
        env_file: dotenv file loaded before the environment is read.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_file: Optional[str] = None
    ):
        self._require_file = config_path is not None
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.env_file = env_file or DEFAULT_ENV_FILE
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Read every source and validate the merged document.

        Returns:
            The validated Config, also kept on ``self.config``.

        Raises:
            FileNotFoundError: An explicit config_path does not exist.
            json.JSONDecodeError: The JSON file is malformed.
            ValueError: An environment variable cannot be converted.
            pydantic.ValidationError: The merged values are inconsistent.
        """
        if Path(self.env_file).is_file():
            load_dotenv(self.env_file)

        document = self._read_file()
        self._apply_environment(document, os.environ)
        self._config = Config(**document)
        return self._config

    def _read_file(self) -> Dict[str, Any]:
        path = Path(self.config_path)
        if not path.is_file():
            if self._require_file:
                raise FileNotFoundError(f"Configuration file not found: {path}")
            return {}

        text = path.read_text(encoding="utf-8")
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise json.JSONDecodeError(
                f"Invalid JSON in {path}: {e.msg}", e.doc, e.pos
            ) from None

    @staticmethod
    def _apply_environment(document: Dict[str, Any], env: Any) -> None:
        """Write non-empty environment values into ``document`` in place."""
        for env_var, (section, field, converter) in ENV_OVERRIDES.items():
            raw = env.get(env_var)
            if raw:
                value = _convert(env_var, raw, converter)
                document.setdefault(section, {})[field] = value

        networks = document.get("networks")
        if networks is None:
            networks = {
                name: network.model_dump(mode="json")
                for name, network in Config().networks.items()
            }
        for name, network in networks.items():
            for suffix, field in NETWORK_URL_FIELDS.items():
                raw = env.get(f"{name.upper()}_{suffix}")
                if raw:
                    network[field] = raw
        document["networks"] = networks

    def get_network(self, name: str) -> NetworkConfig:
        """Look up a configured network by name or chain id, case-insensitively.

        Raises:
            UnknownNetworkError: The network is not configured.
        """
        resolved = self.config.resolve_network(name)
        if resolved is None:
            raise UnknownNetworkError(name, known=sorted(self.config.networks))
        return self.config.networks[resolved]

    @property
    def config(self) -> Config:
        if self._config is None:
            raise RuntimeError("Configuration not loaded; call load_config() first")
        return self._config
