from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from alert_engine.model.enum.alert_enum import AlertSeverity, AlertState


class NotificationEvent(BaseModel):
    """State transition of one rule, delivered to its channels"""

    model_config = ConfigDict(frozen=True)

    rule_name: str
    previous_state: AlertState
    new_state: AlertState
    severity: AlertSeverity
    timestamp: datetime
    description: str
    sequence: int = Field(ge=1, description="Per-rule transition sequence number")
    value: float | None = None
    met_count: int = 0
    periods: int = 1

    @property
    def dedup_key(self) -> tuple[str, int, AlertState]:
        return (self.rule_name, self.sequence, self.new_state)


# ============================================================
# Channel configuration
# ============================================================


class WebhookChannelConfig(BaseModel):
    """Generic JSON webhook channel"""

    type: Literal["webhook"] = "webhook"
    enabled: bool = Field(default=True)
    url: str = Field(default="", description="Webhook endpoint")
    timeout_sec: float = Field(default=5.0, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)


class EmailChannelConfig(BaseModel):
    """SMTP email channel"""

    type: Literal["email"] = "email"
    enabled: bool = Field(default=True)
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    use_starttls: bool = Field(default=True)
    username: str | None = None
    password: str | None = None
    from_addr: str = Field(default="alerts@localhost")
    to_addrs: list[str] = Field(default_factory=list)

    @field_validator("to_addrs")
    @classmethod
    def validate_to_addrs(cls, v):
        for addr in v:
            if "@" not in addr:
                raise ValueError(f"Invalid email address: {addr}")
        return v


ChannelConfig = Annotated[WebhookChannelConfig | EmailChannelConfig, Field(discriminator="type")]


class NotificationConfigSchema(BaseModel):
    """Root notification configuration schema: channel ID -> channel config"""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    channels: dict[str, ChannelConfig] = Field(default_factory=dict)
