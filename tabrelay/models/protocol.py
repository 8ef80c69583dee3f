"""Pydantic models for gateway and automation-channel messages."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GatewayRequest(BaseModel):
    """One line sent by a local client: ``{command, params, authToken}``."""

    model_config = ConfigDict(populate_by_name=True)

    command: str
    params: dict[str, Any] = Field(default_factory=dict)
    auth_token: Optional[str] = Field(default=None, alias="authToken")

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value):
        return {} if value is None else value


class GatewayResponse(BaseModel):
    """One line sent back to a local client."""

    success: bool
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: Any = None) -> "GatewayResponse":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, error: str) -> "GatewayResponse":
        return cls(success=False, error=error)

    def to_wire(self) -> dict:
        return self.model_dump(exclude_none=True)
