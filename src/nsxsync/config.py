"""Configuration management for the NSX resource synchronizer."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import DEFAULT_PAGE_SIZE, DEFAULT_REALIZE_INTERVAL, DEFAULT_REALIZE_MAX_RETRIES


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() not in ("false", "0", "no", "off")


@dataclass
class NSXConfig:
    """NSX Manager connection configuration."""

    base_url: str
    username: str
    password: str
    cluster: str = ""
    timeout: int = 30
    verify_ssl: bool = True
    max_connections: int = 50  # Maximum total connections
    max_keepalive: int = 20  # Maximum keep-alive connections
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass
class SyncConfig:
    """
    Behavior of the synchronization core.

    ``vpc_enabled`` selects how IP blocks are resolved for a virtual network:
    per project (from the Tier-1's project tag) or one shared cluster block.
    """

    vpc_enabled: bool = False
    realize_max_retries: int = DEFAULT_REALIZE_MAX_RETRIES
    realize_interval: float = DEFAULT_REALIZE_INTERVAL
    gc_interval: float = 600.0  # Seconds between garbage collection sweeps
    init_concurrency: int = 8  # Parallel store listings at startup


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: Path | None = None


@dataclass
class SyncerConfig:
    """
    Complete configuration for the synchronizer.

    This combines all configuration sections.
    """

    nsx: NSXConfig | None = None
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def cluster(self) -> str:
        return self.nsx.cluster if self.nsx else ""

    @classmethod
    def from_file(cls, config_path: Path) -> "SyncerConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            SyncerConfig instance

        Raises:
            ValueError: If the file is not valid YAML or not a mapping
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(
                f"Invalid configuration file structure in {config_path}: "
                f"expected dictionary, got {type(data).__name__}"
            )

        nsx_data = data.get("nsx")
        nsx = NSXConfig(**nsx_data) if nsx_data else None

        sync = SyncConfig(**(data.get("sync") or {}))

        logging_data = dict(data.get("logging") or {})
        if logging_data.get("file"):
            logging_data["file"] = Path(logging_data["file"])
        logging = LoggingConfig(**logging_data)

        return cls(nsx=nsx, sync=sync, logging=logging)

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path to save config file
        """
        data = {
            "nsx": dict(self.nsx.__dict__) if self.nsx else None,
            "sync": dict(self.sync.__dict__),
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "SyncerConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            NSX_URL: NSX Manager base URL
            NSX_USERNAME: NSX username
            NSX_PASSWORD: NSX password
            NSX_CLUSTER: Cluster name written in ownership tags
            NSX_VERIFY_SSL: Verify TLS certificates (default: true)
            NSX_VPC_ENABLED: Resolve IP blocks per project (default: false)
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: "json" or "console" (default: json)

        Returns:
            SyncerConfig instance

        Raises:
            ValueError: If NSX_URL is set but required credentials are missing
        """
        nsx_config = None
        nsx_url = os.getenv("NSX_URL")
        if nsx_url:
            username = os.environ.get("NSX_USERNAME", "")
            password = os.environ.get("NSX_PASSWORD", "")

            missing_creds = []
            if not username:
                missing_creds.append("NSX_USERNAME")
            if not password:
                missing_creds.append("NSX_PASSWORD")

            if missing_creds:
                raise ValueError(
                    f"NSX_URL is set but required credentials are missing: {', '.join(missing_creds)}"
                )

            nsx_config = NSXConfig(
                base_url=nsx_url,
                username=username,
                password=password,
                cluster=os.environ.get("NSX_CLUSTER", ""),
                verify_ssl=_env_flag("NSX_VERIFY_SSL", "true"),
            )

        return cls(
            nsx=nsx_config,
            sync=SyncConfig(vpc_enabled=_env_flag("NSX_VPC_ENABLED", "false")),
            logging=LoggingConfig(
                level=os.environ.get("LOG_LEVEL", "INFO"),
                format=os.environ.get("LOG_FORMAT", "json"),
            ),
        )


def load_config(config_file: Path | None = None) -> SyncerConfig:
    """
    Load configuration from file or environment variables.

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return SyncerConfig.from_file(config_file)
    return SyncerConfig.from_env()
