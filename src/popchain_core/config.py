"""Canonical configuration surface for PopChain services.

A single ``PopchainSettings`` instance is built at process start and handed
to every component that needs it (ledger client, sponsor wallet manager,
orchestrator, store, storage). Nothing reads the environment on its own.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Sui JSON-RPC endpoints by network
NETWORK_RPC_URLS: Dict[str, str] = {
    "mainnet": "https://fullnode.mainnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "devnet": "https://fullnode.devnet.sui.io:443",
    "localnet": "http://127.0.0.1:9000",
}

PLACEHOLDER_PACKAGE_ID = "0x" + "0" * 64

# Move modules published by the PopChain package
MODULE_NAMES = {
    "wallet": "popchain_wallet",
    "user": "popchain_user",
    "event": "popchain_event",
    "certificate": "popchain_certificate",
    "admin": "popchain_admin",
    "utils": "popchain_utils",
}

# Entry functions, keyed by (module key, method)
ENTRY_FUNCTIONS = {
    "deposit": ("wallet", "deposit"),
    "withdraw": ("wallet", "withdraw"),
    "create_account": ("user", "create_account"),
    "link_wallet": ("user", "link_wallet"),
    "create_event": ("event", "create_event_with_default_tiers"),
    "add_to_whitelist": ("event", "add_to_whitelist"),
    "remove_from_whitelist": ("event", "remove_from_whitelist"),
    "close_event": ("event", "close_event"),
    "mint_certificate": ("event", "mint_certificate_for_attendee"),
    "transfer_certificate": ("certificate", "transfer_to_wallet"),
    "init_platform": ("admin", "init_platform"),
    "withdraw_to_owner": ("admin", "withdraw_to_owner"),
}

# Accounts created without a wallet are owned by this sentinel
DEFAULT_WALLET_ADDRESS = "0x0"

MIST_PER_SUI = 1_000_000_000

# Headroom a payer keeps for gas when a deposit is split off the gas coin
DEPOSIT_GAS_RESERVE_MIST = 100_000_000


class LedgerSettings(BaseModel):
    """Sui network access."""
    network: Literal["mainnet", "testnet", "devnet", "localnet"] = "testnet"
    rpc_url: str = ""
    request_timeout_seconds: float = 30.0
    finality_poll_interval_seconds: float = 1.0

    @model_validator(mode="after")
    def default_rpc_url(self) -> "LedgerSettings":
        if not self.rpc_url:
            self.rpc_url = NETWORK_RPC_URLS[self.network]
        return self


class ContractSettings(BaseModel):
    """Published PopChain package and shared objects."""
    package_id: str = PLACEHOLDER_PACKAGE_ID
    treasury_id: str = PLACEHOLDER_PACKAGE_ID

    def target(self, module: str, function: str) -> str:
        """Full Move call target: ``<package>::<module>::<function>``."""
        return f"{self.package_id}::{module}::{function}"

    def entry(self, name: str) -> tuple[str, str]:
        """Resolve an entry function name to ``(module, function)``."""
        module_key, function = ENTRY_FUNCTIONS[name]
        return MODULE_NAMES[module_key], function


class SponsorSettings(BaseModel):
    """Service-operated fee payer."""
    private_key: SecretStr = SecretStr("")
    expected_address: str = ""
    gas_budget_mist: int = 50_000_000
    min_balance_mist: int = 50_000_000

    @field_validator("expected_address")
    @classmethod
    def normalize_expected(cls, v: str) -> str:
        return v.strip().lower()


class StoreSettings(BaseModel):
    """Supabase (PostgREST) off-chain store."""
    url: str = ""
    service_key: SecretStr = SecretStr("")
    schema_name: str = "public"
    timeout_seconds: float = 15.0


class StorageSettings(BaseModel):
    """Object storage for certificate images."""
    api_base: str = "https://api.tusky.io"
    api_key: SecretStr = SecretStr("")
    vault_id: str = ""
    parent_id: Optional[str] = None
    public_gateway: str = "https://walrus.tusky.io"
    timeout_seconds: float = 60.0


class PopchainSettings(BaseSettings):
    """Main PopChain configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POPCHAIN_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    contracts: ContractSettings = Field(default_factory=ContractSettings)
    sponsor: SponsorSettings = Field(default_factory=SponsorSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def check_production(self) -> "PopchainSettings":
        if self.environment == "prod" and self.contracts.package_id == PLACEHOLDER_PACKAGE_ID:
            raise ValueError(
                "POPCHAIN_CONTRACTS__PACKAGE_ID must be set to the published package in production"
            )
        return self


@lru_cache
def load_settings(env_file: str | None = None) -> PopchainSettings:
    """Load PopchainSettings once per process to keep services consistent.

    Reads ``.env`` in the working directory unless another file is given; a
    missing file is not an error.
    """
    return PopchainSettings(_env_file=Path(env_file or ".env"))
