"""Pydantic models for batch start requests."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config import MAX_INTERVAL_SECONDS, MAX_SESSION_COUNT, MAX_UES_PER_SESSION
from ..constants import (
    COUNTRY_CODE_LENGTH,
    IDENTIFIER_LENGTH,
    IMSI_LENGTH,
    NETWORK_CODE_LENGTH,
    RUN_MODE_IMMEDIATE,
    RUN_MODE_SCHEDULED,
)


class RunMode(str, Enum):
    IMMEDIATE = RUN_MODE_IMMEDIATE
    SCHEDULED = RUN_MODE_SCHEDULED


def _digits(value: str, length: int, name: str) -> str:
    if len(value) != length or not (value.isascii() and value.isdigit()):
        raise ValueError(f"{name} must be exactly {length} digits")
    return value


class BatchRequest(BaseModel):
    """A request to run a sequence of UE sessions.

    Accepts both the camelCase names the control panel posts and the
    snake_case attribute names.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    country_code: str = Field(alias="countryCode")
    network_code: str = Field(alias="networkCode")
    base_identifier: str = Field(alias="baseIdentifier")
    session_count: int = Field(default=1, alias="sessionCount", ge=1, le=MAX_SESSION_COUNT)
    run_mode: RunMode = Field(default=RunMode.IMMEDIATE, alias="runMode")
    ues_per_session: int = Field(
        default=1, alias="uesPerSession", ge=1, le=MAX_UES_PER_SESSION
    )
    amf_address: Optional[str] = Field(default=None, alias="amfAddress")
    interval_seconds: float = Field(
        default=0.0, alias="intervalSeconds", ge=0, le=MAX_INTERVAL_SECONDS
    )

    @field_validator("country_code")
    @classmethod
    def _check_country_code(cls, v: str) -> str:
        return _digits(v, COUNTRY_CODE_LENGTH, "countryCode")

    @field_validator("network_code")
    @classmethod
    def _check_network_code(cls, v: str) -> str:
        return _digits(v, NETWORK_CODE_LENGTH, "networkCode")

    @field_validator("base_identifier")
    @classmethod
    def _check_base_identifier(cls, v: str) -> str:
        return _digits(v, IDENTIFIER_LENGTH, "baseIdentifier")

    @field_validator("interval_seconds", mode="before")
    @classmethod
    def _blank_interval(cls, v):
        if isinstance(v, str) and not v.strip():
            return 0.0
        return v

    @field_validator("amf_address", mode="before")
    @classmethod
    def _blank_amf_address(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _check_identifier_range(self) -> "BatchRequest":
        # Scheduled runs are sized by the flight feed, so only immediate
        # batches know their last identifier up front.
        if self.run_mode == RunMode.IMMEDIATE:
            last = int(self.base_identifier) + self.identifiers_needed - 1
            if last >= 10 ** IDENTIFIER_LENGTH:
                raise ValueError(
                    f"batch would overflow the {IDENTIFIER_LENGTH}-digit identifier"
                )
        return self

    @property
    def identifiers_needed(self) -> int:
        return self.session_count * self.ues_per_session

    @property
    def imsi(self) -> str:
        return f"{self.country_code}{self.network_code}{self.base_identifier}"


class RunRequest(BaseModel):
    """Single-session request carrying a full IMSI."""

    imsi: str

    @field_validator("imsi")
    @classmethod
    def _check_imsi(cls, v: str) -> str:
        return _digits(v.strip(), IMSI_LENGTH, "imsi")

    def to_batch(self) -> BatchRequest:
        return BatchRequest(
            country_code=self.imsi[:COUNTRY_CODE_LENGTH],
            network_code=self.imsi[COUNTRY_CODE_LENGTH:COUNTRY_CODE_LENGTH + NETWORK_CODE_LENGTH],
            base_identifier=self.imsi[-IDENTIFIER_LENGTH:],
            session_count=1,
        )
