from __future__ import annotations

from pydantic import BaseModel, Field


class UserRequest(BaseModel):
    password: str | None = None
    admin_channels: list[str] | None = None
    disabled: bool | None = None


class ViewDefinition(BaseModel):
    key: str
    value: str | None = None


class DesignDocRequest(BaseModel):
    views: dict[str, ViewDefinition] = Field(default_factory=dict)
