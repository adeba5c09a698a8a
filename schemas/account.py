from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer, field_validator

WalletDataSource = Literal["debank", "helius"]
ExchangeId = Literal["binance", "coinbase", "kraken", "okx"]


def _normalize_name(value: str) -> str:
    name = " ".join((value or "").split())
    if not name or len(name) > 120:
        raise ValueError("name must be 1-120 characters")
    return name


class WalletConnection(BaseModel):
    kind: Literal["wallet"] = "wallet"
    address: str = Field(min_length=1, max_length=128)
    chains: list[str] = Field(default_factory=list)
    perp_exchanges: Optional[list[str]] = None
    data_source: Optional[WalletDataSource] = None

    @field_validator("address")
    @classmethod
    def _strip_address(cls, v: str) -> str:
        return v.strip()

    @field_validator("chains", "perp_exchanges")
    @classmethod
    def _lower_list(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        return [s.strip().lower() for s in v if s and s.strip()]


class ExchangeConnection(BaseModel):
    kind: Literal["exchange"] = "exchange"
    exchange: ExchangeId
    api_key: str = Field(min_length=1)
    api_secret: str = Field(min_length=1, repr=False)

    # Credentials are stored verbatim but never leave the service in responses.
    @field_serializer("api_key", when_used="json")
    def _mask_key(self, v: str) -> str:
        return f"***{v[-4:]}" if len(v) > 4 else "***"

    @field_serializer("api_secret", when_used="json")
    def _mask_secret(self, v: str) -> str:
        return "***"


class ManualConnection(BaseModel):
    kind: Literal["manual"] = "manual"


AccountConnection = Annotated[
    Union[WalletConnection, ExchangeConnection, ManualConnection],
    Field(discriminator="kind"),
]

connection_adapter: TypeAdapter[AccountConnection] = TypeAdapter(AccountConnection)


class AccountCreate(BaseModel):
    name: str
    is_active: bool = True
    connection: AccountConnection = Field(default_factory=ManualConnection)
    # True derives the dedup key from the name; a string is slugified as given.
    slug: Union[bool, str, None] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _normalize_name(value)


class AccountUpdate(BaseModel):
    name: Optional[str] = None
    is_active: Optional[bool] = None
    connection: Optional[AccountConnection] = None
    # Accepted so clients can echo a full account back; never applied.
    slug: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _normalize_name(value)


class AccountCreated(BaseModel):
    id: str


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    is_active: bool
    connection: AccountConnection
    slug: Optional[str] = None
    added_at: datetime
