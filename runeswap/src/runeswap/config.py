"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from runecore.constants import MIN_ABSOLUTE_FEE, MIN_FEE_RATE, MIN_PAYMENT_UTXO_VALUE
from runecore.models import NetworkType, RuneId

MAX_BASKET_DESTINATIONS = 9


class BasketDestination(BaseModel):
    """One destination token of a basket redemption and its share of the amount."""

    token_id: str
    weight: Decimal = Field(gt=0, le=1)

    @field_validator("token_id")
    @classmethod
    def validate_token_id(cls, v: str) -> str:
        RuneId.parse(v)
        return v


def default_basket_destinations() -> list[BasketDestination]:
    weights = [
        ("72795:1082", "0.3"),
        ("72801:1001", "0.2"),
        ("72801:1007", "0.15"),
        ("72801:1004", "0.1"),
        ("72801:1003", "0.07"),
        ("72801:1002", "0.05"),
        ("72801:1008", "0.04"),
        ("72801:1005", "0.03"),
        ("72801:1006", "0.03"),
    ]
    return [BasketDestination(token_id=t, weight=Decimal(w)) for t, w in weights]


class BasketConfig(BaseModel):
    """
    Basket redemption layout.

    legs lists how many destination tokens each sequential draft carries;
    the first draft also carries the source token.
    """

    source_token_id: str = "72801:1000"
    destinations: list[BasketDestination] = Field(default_factory=default_basket_destinations)
    legs: list[int] = Field(default_factory=lambda: [2, 3, 3, 1])
    min_amount: Decimal = Field(default=Decimal(100), gt=0)

    @field_validator("source_token_id")
    @classmethod
    def validate_source_token_id(cls, v: str) -> str:
        RuneId.parse(v)
        return v

    @model_validator(mode="after")
    def validate_layout(self) -> BasketConfig:
        if not self.destinations:
            raise ValueError("basket needs at least one destination token")
        if len(self.destinations) > MAX_BASKET_DESTINATIONS:
            raise ValueError(f"basket supports at most {MAX_BASKET_DESTINATIONS} destinations")
        if any(size < 1 for size in self.legs):
            raise ValueError("every basket leg must carry at least one destination")
        if sum(self.legs) != len(self.destinations):
            raise ValueError(
                f"basket legs carry {sum(self.legs)} destinations, "
                f"but {len(self.destinations)} are configured"
            )
        token_ids = [d.token_id for d in self.destinations]
        if len(set(token_ids)) != len(token_ids) or self.source_token_id in token_ids:
            raise ValueError("basket tokens must be distinct")
        return self


class SwapSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RUNESWAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    network: NetworkType = NetworkType.TESTNET
    log_level: str = "INFO"

    # External services
    maestro_url: str = "https://xbt-testnet.gomaestro-api.org/v0"
    maestro_api_key: str = ""
    mempool_api_url: str = "https://mempool.space/testnet4/api"
    execution_rpc_url: str = "http://127.0.0.1:9002"
    http_timeout: float = Field(default=30.0, gt=0)

    # Asset swap program: custodial signing key (hex), escrow account and program id
    escrow_private_key: str = ""
    escrow_account_pubkey: str = "5eca3cc573ec9385aad3c81e69112c8ae5e54afd0f678e983d241267b4510109"
    swap_program_id: str = "393cd8d2c014d9e25b31a8a8407ff00986d9f84f40055545aacab3f05dd93240"

    # Basket redemption program
    basket_private_key: str = ""
    basket_account_pubkey: str = "7a1fcbe1f3b73b8bb75b6b1b4e7dc11ae55196dc8edd8c7fb69ba05290bebe2f"
    basket_program_id: str = "91d402e0373f71cd86ca53bc623912bb47a350015bcf5aafa7be9e3fc202e895"

    # Collection held in escrow
    collection_name: str = "Chimera"
    collection: list[str] = Field(default_factory=list)

    # Claim (mint) policy
    launch_time: datetime | None = None
    whitelist: list[str] = Field(default_factory=list)
    whitelist_window_sec: int = Field(default=86_400, ge=0)
    whitelist_cap: int = Field(default=2, ge=0)
    public_cap: int = Field(default=1, ge=0)

    # Price of one asset, in display units of asset_token_id
    asset_token_id: str = "89368:422"
    asset_price: Decimal = Field(default=Decimal(100_000), gt=0)

    basket: BasketConfig = Field(default_factory=BasketConfig)

    # Fees
    min_fee_rate: float = Field(default=MIN_FEE_RATE, gt=0)
    min_absolute_fee: int = Field(default=MIN_ABSOLUTE_FEE, ge=0)
    min_payment_utxo_value: int = Field(default=MIN_PAYMENT_UTXO_VALUE, ge=0)

    # Settlement budgets. Polling deadlines are interval * attempts.
    submit_max_retries: int = Field(default=3, ge=1)
    submit_retry_delay: float = Field(default=1.0, ge=0)
    processed_poll_interval: float = Field(default=10.0, ge=0)
    processed_poll_attempts: int = Field(default=3, ge=1)
    confirmation_poll_interval: float = Field(default=5.0, ge=0)
    confirmation_poll_attempts: int = Field(default=3, ge=1)
    broadcast_max_attempts: int = Field(default=3, ge=1)
    broadcast_retry_delay: float = Field(default=10.0, ge=0)

    # Claim endpoint limiter: requests admitted per window
    rate_limit_requests: int = Field(default=10, ge=1)
    rate_limit_window_sec: int = Field(default=1, ge=1)

    @field_validator(
        "escrow_account_pubkey", "swap_program_id", "basket_account_pubkey", "basket_program_id"
    )
    @classmethod
    def validate_pubkey_hex(cls, v: str) -> str:
        try:
            raw = bytes.fromhex(v)
        except ValueError as e:
            raise ValueError(f"not valid hex: {v!r}") from e
        if len(raw) != 32:
            raise ValueError(f"expected a 32-byte key, got {len(raw)} bytes")
        return v.lower()

    @field_validator("escrow_private_key", "basket_private_key")
    @classmethod
    def validate_private_key_hex(cls, v: str) -> str:
        if v and (len(v) != 64 or any(c not in "0123456789abcdefABCDEF" for c in v)):
            raise ValueError("private key must be 32 bytes of hex")
        return v

    @field_validator("asset_token_id")
    @classmethod
    def validate_asset_token_id(cls, v: str) -> str:
        RuneId.parse(v)
        return v

    @property
    def processed_poll_deadline(self) -> float:
        return self.processed_poll_interval * self.processed_poll_attempts

    @property
    def confirmation_poll_deadline(self) -> float:
        return self.confirmation_poll_interval * self.confirmation_poll_attempts


def get_settings() -> SwapSettings:
    return SwapSettings()
