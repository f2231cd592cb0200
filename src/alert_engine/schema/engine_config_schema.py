from pydantic import BaseModel, ConfigDict, Field


class PathsConfig(BaseModel):
    """Path configuration"""

    STATE_DIR: str = Field(default="logs/state", description="Rule state checkpoint directory")
    LOG_DIR: str = Field(default="logs", description="Log directory")


class SchedulerConfig(BaseModel):
    """Evaluation scheduler configuration"""

    CONCURRENCY: int = Field(default=8, ge=1, le=500, description="Max concurrent rule evaluations")
    POLL_INTERVAL_SEC: float = Field(default=1.0, gt=0, le=60, description="Upper bound on scheduler sleep")
    SHUTDOWN_GRACE_SEC: float = Field(default=10.0, ge=0, description="Wait for in-flight evaluations on stop")


class TelemetryConfig(BaseModel):
    """Telemetry client configuration"""

    URL: str = Field(default="", description="Telemetry query endpoint")
    API_KEY: str | None = Field(default=None, description="Bearer token for the telemetry endpoint")
    QUERY_TIMEOUT_SEC: float = Field(default=10.0, gt=0, le=300, description="Per-attempt query timeout")
    MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10, description="Query attempts before Indeterminate")
    BACKOFF_BASE_SEC: float = Field(default=0.5, ge=0, description="Base retry backoff")
    BACKOFF_MAX_SEC: float = Field(default=5.0, ge=0, description="Retry backoff cap")


class CheckpointConfig(BaseModel):
    """Rule state checkpoint configuration"""

    ENABLED: bool = Field(default=False)
    FILENAME: str = Field(default="rule_state.json")
    INTERVAL_SEC: float = Field(default=30.0, gt=0)


class ApiConfig(BaseModel):
    """Status API configuration"""

    ENABLED: bool = Field(default=False)
    HOST: str = Field(default="127.0.0.1")
    PORT: int = Field(default=8080, ge=1, le=65535)


class EngineConfig(BaseModel):
    """Engine configuration (full)"""

    model_config = ConfigDict(extra="allow")

    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=False)
    METRICS_REPORT_INTERVAL_SEC: float = Field(default=60.0, gt=0, description="Operational metrics log period")
    PATHS: PathsConfig = Field(default_factory=PathsConfig)
    SCHEDULER: SchedulerConfig = Field(default_factory=SchedulerConfig)
    TELEMETRY: TelemetryConfig = Field(default_factory=TelemetryConfig)
    CHECKPOINT: CheckpointConfig = Field(default_factory=CheckpointConfig)
    API: ApiConfig = Field(default_factory=ApiConfig)
