"""Pydantic schema for the ledger sync configuration document."""

import logging
from typing import ClassVar, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, HttpUrl, ValidationInfo

logger = logging.getLogger(__name__)


class NetworkConfig(BaseModel):
    """Endpoints for one Terra network."""

    fcd_url: HttpUrl = Field(..., description="Base URL of the FCD indexer serving /v1/txs")
    lcd_url: HttpUrl = Field(..., description="Base URL of the LCD used for contract queries")
    chain_id: str = Field(..., description="Chain id (e.g., 'columbus-5')")
    query_api: Literal["terra_legacy", "cosmwasm"] = Field(
        default="terra_legacy",
        description="Smart-query route flavour exposed by the LCD",
    )

    @field_validator("chain_id")
    @classmethod
    def validate_chain_id(cls, v: str) -> str:
        """Validate chain id is not empty."""
        if not v or not v.strip():
            raise ValueError("Chain id cannot be empty")
        return v.strip()


def _default_networks() -> Dict[str, NetworkConfig]:
    return {
        "mainnet": NetworkConfig(
            fcd_url="https://columbus-fcd.terra.dev",
            lcd_url="https://columbus-lcd.terra.dev",
            chain_id="columbus-5",
        ),
        "testnet": NetworkConfig(
            fcd_url="https://bombay-fcd.terra.dev",
            lcd_url="https://bombay-lcd.terra.dev",
            chain_id="bombay-12",
        ),
    }


class LedgerConfig(BaseModel):
    """Configuration for reading the account transaction feed."""

    page_limit: int = Field(default=100, ge=1, le=100, description="Transactions per feed page")
    request_timeout_seconds: int = Field(
        default=10, ge=1, le=120, description="Network timeout for one page request"
    )
    end_of_feed_status_codes: List[int] = Field(
        default=[500],
        description="HTTP statuses the feed answers with once paged past its oldest transaction",
    )


class SyncConfig(BaseModel):
    """Timing of update cycles.

    The scan deadline bounds how long the scanner keeps paging. The
    force-end timeout bounds the whole cycle including enrichment, and the
    lock TTL must outlive it so a crashed worker never leaves a key locked
    forever while a live worker can still finish.
    """

    scan_timeout_seconds: float = Field(
        default=50, gt=0, le=3600, description="Wall-clock deadline for scanning in one cycle"
    )
    force_end_timeout_seconds: float = Field(
        default=75, gt=0, le=3600, description="Hard bound on one update cycle"
    )
    lock_ttl_seconds: float = Field(
        default=100, gt=0, le=7200, description="Expiry of the per-key update lock"
    )
    idle_update_interval_seconds: float = Field(
        default=20, ge=0, le=86400, description="Minimum time between two update starts for a key"
    )

    @model_validator(mode="after")
    def validate_timeout_relationships(self) -> "SyncConfig":
        """Validate scan deadline < force-end timeout < lock TTL."""
        if self.scan_timeout_seconds >= self.force_end_timeout_seconds:
            raise ValueError(
                f"scan_timeout_seconds ({self.scan_timeout_seconds}) "
                f"must be less than force_end_timeout_seconds ({self.force_end_timeout_seconds})"
            )
        if self.force_end_timeout_seconds >= self.lock_ttl_seconds:
            raise ValueError(
                f"force_end_timeout_seconds ({self.force_end_timeout_seconds}) "
                f"must be less than lock_ttl_seconds ({self.lock_ttl_seconds})"
            )
        return self


class EnrichmentConfig(BaseModel):
    """Configuration for contract detail queries."""

    max_concurrent_queries: int = Field(
        default=10, ge=1, le=50, description="Concurrent contract queries per batch"
    )
    tokens_page_limit: int = Field(
        default=30, ge=1, le=100, description="Page size for the NFT 'tokens' cursor"
    )
    request_timeout_seconds: int = Field(
        default=10, ge=1, le=120, description="Network timeout for one contract query"
    )


class ClassifierRules(BaseModel):
    """Rules deciding which transactions touch a contract of one asset class."""

    event_types: List[str] = Field(..., description="Event types carrying contract logs")
    actions: List[str] = Field(..., description="Values of the 'action' attribute that count")
    message_keys: List[str] = Field(
        default_factory=list,
        description="Top-level execute message keys that count",
    )
    failure_marker: str = Field(
        default="failed",
        description="Substring of raw_log marking a failed transaction (message path only)",
    )

    @field_validator("event_types", "actions")
    @classmethod
    def validate_not_empty(cls, v: List[str], info: ValidationInfo) -> List[str]:
        """Validate rule lists are not empty."""
        cleaned = [item.strip() for item in v if item and item.strip()]
        if not cleaned:
            raise ValueError(f"{info.field_name} cannot be empty")
        return cleaned


def _default_classifier_rules() -> Dict[str, ClassifierRules]:
    return {
        "nft": ClassifierRules(
            event_types=["wasm"],
            actions=["transfer_nft", "mint"],
            message_keys=["transfer_nft", "mint"],
        ),
        "token": ClassifierRules(
            event_types=["from_contract"],
            actions=["transfer", "transfer_from", "send", "send_from", "mint", "burn"],
            message_keys=["transfer", "transfer_from", "send", "send_from", "mint", "burn"],
        ),
    }


class RegistryConfig(BaseModel):
    """Where the known-contract registries are loaded from.

    Each source is a file path or an http(s) URL of a JSON document shaped
    ``{network: {contract: metadata}}``, as published for Terra assets.
    """

    nft: Optional[str] = Field(default=None, description="Source of the known CW721 contracts")
    token: Optional[str] = Field(default=None, description="Source of the known CW20 tokens")

    @field_validator("nft", "token")
    @classmethod
    def validate_location(cls, v: Optional[str]) -> Optional[str]:
        """Normalize blank locations to None."""
        if v is None or not v.strip():
            return None
        return v.strip()

    def sources(self) -> Dict[str, str]:
        """Configured sources by namespace."""
        return {
            namespace: source
            for namespace, source in (("nft", self.nft), ("token", self.token))
            if source
        }


class StoreConfig(BaseModel):
    """Configuration for the aggregate store and lock backend."""

    backend: Literal["memory", "redis"] = Field(default="memory", description="Store backend")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    write_attempts: int = Field(
        default=2, ge=1, le=10, description="Attempts for persisting one aggregate"
    )
    write_backoff_seconds: float = Field(
        default=0.5, ge=0, le=30, description="Delay between persist attempts"
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL scheme."""
        url = v.strip()
        if not url.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with 'redis://', 'rediss://' or 'unix://'")
        return url


class AppConfig(BaseModel):
    """Where and how the HTTP service runs."""

    env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    host: str = Field(default="0.0.0.0", description="Application host")
    port: int = Field(default=8000, ge=1, le=65535, description="Application port")
    debug: bool = Field(default=False, description="Debug mode")

    @field_validator("debug")
    @classmethod
    def validate_debug(cls, v: bool, info: ValidationInfo) -> bool:
        """Debug in production is allowed but logged."""
        if v and info.data.get("env") == "production":
            logger.warning(
                "APP_DEBUG is on in production; error pages may leak internals"
            )
        return v


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )
    format: Literal["json", "text"] = Field(default="json", description="Log format")


class CORSConfig(BaseModel):
    """Browser origins allowed to call the API."""

    allowed_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @field_validator("allowed_origins")
    @classmethod
    def validate_origins(cls, v: List[str]) -> List[str]:
        """Strip origins and reject blanks."""
        if not v:
            raise ValueError("At least one CORS origin must be specified")

        for origin in v:
            if not origin or not origin.strip():
                raise ValueError("CORS origin cannot be empty")

        return [origin.strip() for origin in v]


class Config(BaseModel):
    """Root of the configuration document."""

    ALLOWED_NAMESPACES: ClassVar[List[str]] = ["nft", "token"]

    networks: Dict[str, NetworkConfig] = Field(
        default_factory=_default_networks, description="Networks by name"
    )
    ledger: LedgerConfig = Field(
        default_factory=LedgerConfig, description="Ledger feed configuration"
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig, description="Update cycle timing"
    )
    enrichment: EnrichmentConfig = Field(
        default_factory=EnrichmentConfig, description="Contract query configuration"
    )
    classifier: Dict[str, ClassifierRules] = Field(
        default_factory=_default_classifier_rules,
        description="Classification rules per asset class",
    )
    registry: RegistryConfig = Field(
        default_factory=RegistryConfig, description="Known registry source"
    )
    store: StoreConfig = Field(
        default_factory=StoreConfig, description="Store configuration"
    )
    app: AppConfig = Field(
        default_factory=AppConfig, description="Application configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    cors: CORSConfig = Field(
        default_factory=CORSConfig, description="CORS configuration"
    )

    @field_validator("networks")
    @classmethod
    def validate_networks(cls, v: Dict[str, NetworkConfig]) -> Dict[str, NetworkConfig]:
        """Validate networks mapping."""
        if not v:
            raise ValueError("At least one network must be configured")
        return {name.lower().strip(): network for name, network in v.items()}

    @field_validator("classifier")
    @classmethod
    def validate_classifier(cls, v: Dict[str, ClassifierRules]) -> Dict[str, ClassifierRules]:
        """Validate that every asset class has rules."""
        defaults = _default_classifier_rules()
        unknown = set(v) - set(cls.ALLOWED_NAMESPACES)
        if unknown:
            raise ValueError(
                f"Classifier namespaces must be among {cls.ALLOWED_NAMESPACES}, "
                f"got {sorted(unknown)}"
            )
        return {**defaults, **v}

    def resolve_network(self, name: str) -> Optional[str]:
        """Configured network name for a network name or a chain id, if any."""
        wanted = name.strip().lower()
        if wanted in self.networks:
            return wanted
        for network_name, network in self.networks.items():
            if network.chain_id.lower() == wanted:
                return network_name
        return None

    model_config = {
        "json_schema_extra": {
            "example": {
                "networks": {
                    "mainnet": {
                        "fcd_url": "https://columbus-fcd.terra.dev",
                        "lcd_url": "https://columbus-lcd.terra.dev",
                        "chain_id": "columbus-5",
                    }
                },
                "sync": {
                    "scan_timeout_seconds": 50,
                    "force_end_timeout_seconds": 75,
                    "lock_ttl_seconds": 100,
                    "idle_update_interval_seconds": 20,
                },
                "store": {"backend": "redis", "redis_url": "redis://localhost:6379/0"},
            }
        }
    }
