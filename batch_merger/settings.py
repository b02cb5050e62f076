"""Runtime configuration read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _cpu_count() -> int:
    return os.cpu_count() or 1


def default_max_concurrent_operations() -> int:
    return max(2, int(_cpu_count() * 0.8))


def default_worker_pool_size() -> int:
    return max(2, _cpu_count() // 2)


@dataclass
class GovernorConfig:
    """Tunables owned by the resource governor."""

    max_concurrent_operations: int = 2
    batch_size: int = 4
    memory_threshold_mb: float = 1024.0
    cpu_threshold: float = 80.0
    enable_parallel_processing: bool = True
    enable_memory_optimization: bool = True
    enable_resource_monitoring: bool = True
    worker_pool_size: int = 2
    throttle_poll_interval: float = 1.0
    throttle_max_wait: float = 30.0
    batch_delay: float = 0.01
    cpu_sample_interval: float = 0.1

    def __post_init__(self):
        self.max_concurrent_operations = max(1, int(self.max_concurrent_operations))
        self.batch_size = max(1, int(self.batch_size))
        self.worker_pool_size = max(1, int(self.worker_pool_size))

    @property
    def effective_batch_size(self) -> int:
        return min(self.batch_size, self.max_concurrent_operations)


class MergeSettings(BaseSettings):
    """Directories, engine options and governor defaults."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    upload_dir: str = "./uploads"
    output_dir: str = "./output"
    temp_dir: str = "./temp"
    logs_dir: str = "./output/logs"

    libreoffice_path: Optional[str] = None
    engine_timeout_seconds: float = Field(default=30.0, gt=0)

    max_input_file_mb: float = Field(default=100.0, gt=0)
    large_file_threshold_mb: float = Field(default=50.0, gt=0)

    max_concurrent_operations: int = Field(default_factory=default_max_concurrent_operations, ge=1)
    batch_size: int = Field(default=4, ge=1)
    memory_threshold_mb: float = Field(default=1024.0, gt=0)
    cpu_threshold: float = Field(default=80.0, gt=0, le=100)
    worker_pool_size: int = Field(default_factory=default_worker_pool_size, ge=1)
    enable_parallel_processing: bool = True
    enable_memory_optimization: bool = True
    enable_resource_monitoring: bool = True
    throttle_poll_interval: float = Field(default=1.0, ge=0)
    throttle_max_wait: float = Field(default=30.0, ge=0)
    batch_delay: float = Field(default=0.01, ge=0)

    enable_detailed_logging: bool = True
    log_privacy_mode: str = "redacted"

    def governor_config(self) -> GovernorConfig:
        return GovernorConfig(
            max_concurrent_operations=self.max_concurrent_operations,
            batch_size=self.batch_size,
            memory_threshold_mb=self.memory_threshold_mb,
            cpu_threshold=self.cpu_threshold,
            enable_parallel_processing=self.enable_parallel_processing,
            enable_memory_optimization=self.enable_memory_optimization,
            enable_resource_monitoring=self.enable_resource_monitoring,
            worker_pool_size=self.worker_pool_size,
            throttle_poll_interval=self.throttle_poll_interval,
            throttle_max_wait=self.throttle_max_wait,
            batch_delay=self.batch_delay,
        )

    def ensure_directories(self) -> None:
        for path in (self.upload_dir, self.output_dir, self.temp_dir, self.logs_dir):
            os.makedirs(path, exist_ok=True)
