"""Orchestrator configuration.

Defaults can be overridden through environment variables:
    FWFLASH_HOME              user data directory (default: ~/.fwflash)
    FWFLASH_DEPENDENCIES_DIR  bundled portable toolchains (default: <home>/dependencies)
    FWFLASH_LOG_DIR           log directory (default: <home>/logs)
    FWFLASH_HISTORY_SIZE      output events retained for late subscribers
    FWFLASH_QUEUE_SIZE        per-subscriber buffered events before dropping
    FWFLASH_TAIL_LINES        output lines handed to the result classifier
    FWFLASH_KILL_GRACE        seconds between terminate and kill on cancel
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_HOME = Path.home() / ".fwflash"


@dataclass
class OrchestratorConfig:
    """Settings shared by every job of one orchestrator instance.

    Attributes:
        user_data_path: Root for checkouts, toolchain state and logs
        dependencies_path: Directory holding bundled portable toolchains (None: under user_data_path)
        log_dir: Directory for rotating log files (None: under user_data_path)
        history_size: Output events retained and replayed to late subscribers
        subscriber_queue_size: Undelivered events buffered per subscriber
        diagnostic_tail_lines: Output lines passed to the result classifier
        message_lines: Meaningful lines kept in a failure message
        kill_grace_period: Seconds between terminate and kill on cancellation
    """

    user_data_path: Path = field(default_factory=lambda: DEFAULT_HOME)
    dependencies_path: Optional[Path] = None
    log_dir: Optional[Path] = None
    history_size: int = 1000
    subscriber_queue_size: int = 500
    diagnostic_tail_lines: int = 40
    message_lines: int = 5
    kill_grace_period: float = 3.0

    def __post_init__(self) -> None:
        self.user_data_path = Path(self.user_data_path)
        if self.subscriber_queue_size < 1:
            raise ValueError("subscriber_queue_size must be at least 1")
        if self.diagnostic_tail_lines < 1:
            raise ValueError("diagnostic_tail_lines must be at least 1")

    @property
    def dependencies_dir(self) -> Path:
        """Bundled toolchain directory (default: <user_data_path>/dependencies)."""
        return Path(self.dependencies_path or self.user_data_path / "dependencies")

    @property
    def logs_dir(self) -> Path:
        return Path(self.log_dir or self.user_data_path / "logs")

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "OrchestratorConfig":
        """Build a configuration from FWFLASH_* environment variables."""
        env = os.environ if environ is None else environ

        home = Path(env["FWFLASH_HOME"]).expanduser() if env.get("FWFLASH_HOME") else DEFAULT_HOME
        dependencies = env.get("FWFLASH_DEPENDENCIES_DIR")
        log_dir = env.get("FWFLASH_LOG_DIR")

        return cls(
            user_data_path=home,
            dependencies_path=Path(dependencies).expanduser() if dependencies else None,
            log_dir=Path(log_dir).expanduser() if log_dir else None,
            history_size=_int_setting(env, "FWFLASH_HISTORY_SIZE", 1000),
            subscriber_queue_size=_int_setting(env, "FWFLASH_QUEUE_SIZE", 500),
            diagnostic_tail_lines=_int_setting(env, "FWFLASH_TAIL_LINES", 40),
            kill_grace_period=_float_setting(env, "FWFLASH_KILL_GRACE", 3.0),
        )


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logging.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


def _float_setting(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logging.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default
