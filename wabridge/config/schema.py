"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Base(BaseModel):
    """Base model accepting both camelCase and snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class EngineConfig(Base):
    """Reasoning engine CLI invocation."""

    command: str = "claude"
    output_format: Literal["stream-json", "json"] = "stream-json"


class TransportConfig(Base):
    """WhatsApp sidecar connection."""

    bridge_url: str = "ws://127.0.0.1:3001"
    bridge_token: str = ""
    auth_dir: str = "~/.wabridge/auth"
    reconnect_delay_ms: int = Field(default=3000, ge=0)
    send_timeout_ms: int = Field(default=20000, gt=0)

    @property
    def auth_path(self) -> Path:
        return Path(self.auth_dir).expanduser()


class Config(Base):
    """Root configuration for wabridge."""

    phone: str = ""
    cwd: str = "~"
    allowed_tools: list[str] = Field(default_factory=lambda: ["Bash", "Read", "Write", "Edit"])
    skill: str | None = None
    max_turns: int | None = Field(default=None, ge=1)
    timeout: int = Field(default=300_000, gt=0)
    max_chunk_chars: int = Field(default=4000, gt=0)
    sent_registry_ttl_s: float = Field(default=600.0, gt=0)
    sent_registry_max_entries: int = Field(default=1000, ge=1)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        return "".join(ch for ch in value if ch not in "+ -()")

    @property
    def workspace_path(self) -> Path:
        return Path(self.cwd or "~").expanduser()
