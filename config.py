"""
Configuration management using Pydantic Settings with safe access wrapper
"""
from pydantic_settings import BaseSettings
from typing import Any


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Staged Rollout Controller"
    version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"

    # Logging settings
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "rollout.log"
    log_file_max_bytes: int = 10485760
    log_file_backup_count: int = 10

    # Scheduler
    rollout_check_interval_seconds: int = 60

    # Metrics aggregation
    latency_window_size: int = 10000

    # Alert thresholds (global, not per feature)
    alert_error_rate_threshold: float = 0.05
    alert_latency_p95_ms: float = 1000.0
    alert_latency_p99_ms: float = 2000.0
    alert_success_rate_percent: float = 95.0

    # User feedback
    feedback_min_samples: int = 10
    feedback_negative_threshold: float = 0.3

    # Retention
    max_alerts: int = 10000
    max_rollback_history: int = 1000

    # Stalled rollout detection
    stalled_rollout_hours: float = 168.0

    # Monitoring
    enable_metrics: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"   # allow unknown env vars without error

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._validated = False
        self.validate_settings()

    def validate_settings(self):
        """Validate critical settings on startup"""
        if self._validated:
            return

        errors = []

        if self.environment not in ["development", "testing", "production"]:
            errors.append(f"Invalid environment: {self.environment}")

        if self.rollout_check_interval_seconds <= 0:
            errors.append("Rollout check interval must be positive")

        if self.latency_window_size <= 0:
            errors.append("Latency window size must be positive")

        if self.max_alerts <= 0:
            errors.append("max_alerts must be positive")

        if not 0 <= self.alert_error_rate_threshold <= 1:
            errors.append(
                f"Invalid error rate threshold: {self.alert_error_rate_threshold}"
            )

        if not 0 <= self.alert_success_rate_percent <= 100:
            errors.append(
                f"Invalid success rate threshold: {self.alert_success_rate_percent}"
            )

        if not 0 <= self.feedback_negative_threshold <= 1:
            errors.append(
                f"Invalid feedback threshold: {self.feedback_negative_threshold}"
            )

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")

        self._validated = True


class SafeSettings:
    """Safe wrapper for settings with fallback defaults"""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._defaults = {
            "log_level": "INFO",
            "log_dir": "logs",
            "log_file": "rollout.log",
            "environment": "production",
            "debug": False,
            "rollout_check_interval_seconds": 60,
            "latency_window_size": 10000,
            "max_alerts": 10000,
            "max_rollback_history": 1000,
            "stalled_rollout_hours": 168.0,
            "enable_metrics": True,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Safely get setting value with fallback"""
        try:
            value = getattr(self._settings, key, None)
            if value is None:
                value = self._defaults.get(key, default)
            return value
        except Exception:
            return self._defaults.get(key, default)

    def __getattr__(self, key: str) -> Any:
        """Proxy attribute access with safety"""
        return self.get(key)

    @property
    def raw(self) -> Settings:
        """Get raw settings object"""
        return self._settings


# Initialize settings with safety wrapper
_raw_settings = Settings()
settings = SafeSettings(_raw_settings)
