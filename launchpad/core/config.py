"""
Configuration Manager for the launchpad client
Loads configuration from YAML files with environment variable support
"""

import os
import re
import yaml
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_PROGRAM_ID = "ip6SLxttjbSrQggmM2SH5RZXhWKq3onmkzj3kExoceN"
DEFAULT_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
DEFAULT_QUOTE_MINT = "So11111111111111111111111111111111111111112"
DEFAULT_FEE_AUTHORITY = "CvBMs2LEp8KbfCvPNMawR5cFyQ1k9ac7xrtCoxu1Y2gH"

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}')


@dataclass
class RPCEndpoint:
    """RPC endpoint configuration"""
    url: str
    label: str
    priority: int = 0
    timeout_ms: int = 10000


@dataclass
class RPCConfig:
    """Resilient request layer configuration"""
    endpoints: List[RPCEndpoint]
    max_retries: int = 5
    base_delay_ms: int = 2000
    multiple_accounts_batch_size: int = 100


@dataclass
class ProgramConfig:
    """On-chain program addresses"""
    program_id: str = DEFAULT_PROGRAM_ID
    metadata_program_id: str = DEFAULT_METADATA_PROGRAM_ID
    quote_mint: str = DEFAULT_QUOTE_MINT
    fee_authority: str = DEFAULT_FEE_AUTHORITY


@dataclass
class MetadataConfig:
    """Metadata resolver and cache configuration"""
    cache_ttl_s: int = 1800
    document_timeout_s: float = 5.0
    batch_size: int = 100
    max_concurrency: int = 10


@dataclass
class RefreshConfig:
    """Refresh orchestrator configuration"""
    interval_s: int = 120
    manual_cooldown_s: float = 2.0
    aggregate_cache_ttl_s: int = 300
    demo_fallback: bool = True
    activity_limit: int = 50
    activity_parse_limit: int = 10


@dataclass
class StorageConfig:
    """Local blob store configuration"""
    directory: str = "data/launchpad"


@dataclass
class TransactionConfig:
    """Transaction submission configuration"""
    skip_preflight: bool = False
    simulate_before_send: bool = True
    commitment: str = "confirmed"
    confirmation_timeout_s: int = 60
    confirmation_poll_interval_s: float = 1.0
    compute_unit_limit: Optional[int] = None
    compute_unit_price: Optional[int] = None


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    """Metrics configuration"""
    enable_histogram: bool = True
    max_samples: int = 5000


@dataclass
class LaunchpadConfig:
    """Complete client configuration"""
    rpc_config: RPCConfig
    program_config: ProgramConfig = field(default_factory=ProgramConfig)
    metadata_config: MetadataConfig = field(default_factory=MetadataConfig)
    refresh_config: RefreshConfig = field(default_factory=RefreshConfig)
    storage_config: StorageConfig = field(default_factory=StorageConfig)
    transaction_config: TransactionConfig = field(default_factory=TransactionConfig)
    log_config: LogConfig = field(default_factory=LogConfig)
    metrics_config: MetricsConfig = field(default_factory=MetricsConfig)


class ConfigurationManager:
    """Manages client configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._config: Optional[LaunchpadConfig] = None

    def load_config(self) -> LaunchpadConfig:
        """
        Load and validate configuration from file

        Returns:
            LaunchpadConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config_data = self._substitute_env_vars(raw_config)
        self._config = self._parse_config(self._config_data)

        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "metadata.cache_ttl_s")
            default: Default value if key not found
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value: Any = self._config_data
        for k in key.split('.'):
            if not isinstance(value, dict) or value.get(k) is None:
                return default
            value = value[k]

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} references

        Both full values ("${RPC_URL}") and embedded references
        ("https://rpc.example.com/?api-key=${API_KEY}") are replaced.

        Raises:
            ValueError: If a referenced variable is not set
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        if isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        if isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return _ENV_PATTERN.sub(replace_var, config)
        return config

    def _parse_config(self, config: Dict[str, Any]) -> LaunchpadConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        rpc_data = config.get('rpc', {}) or {}
        endpoints_data = rpc_data.get('endpoints', [])

        if not endpoints_data:
            raise ValueError("No RPC endpoints configured")

        endpoints = []
        for index, ep in enumerate(endpoints_data):
            # Bare URL strings are accepted for short endpoint lists
            if isinstance(ep, str):
                ep = {'url': ep}
            endpoints.append(RPCEndpoint(
                url=ep['url'],
                label=ep.get('label', f"endpoint_{index}"),
                priority=ep.get('priority', index),
                timeout_ms=ep.get('timeout_ms', 10000)
            ))

        # Sort by priority (0 = first in rotation); stable for equal priorities
        endpoints.sort(key=lambda x: x.priority)

        rpc_config = RPCConfig(
            endpoints=endpoints,
            max_retries=rpc_data.get('max_retries', 5),
            base_delay_ms=rpc_data.get('base_delay_ms', 2000),
            multiple_accounts_batch_size=rpc_data.get('multiple_accounts_batch_size', 100)
        )
        if rpc_config.max_retries < 1:
            raise ValueError("rpc.max_retries must be at least 1")

        program_data = config.get('program', {}) or {}
        program_config = ProgramConfig(
            program_id=program_data.get('program_id', DEFAULT_PROGRAM_ID),
            metadata_program_id=program_data.get('metadata_program_id', DEFAULT_METADATA_PROGRAM_ID),
            quote_mint=program_data.get('quote_mint', DEFAULT_QUOTE_MINT),
            fee_authority=program_data.get('fee_authority', DEFAULT_FEE_AUTHORITY)
        )

        metadata_data = config.get('metadata', {}) or {}
        metadata_config = MetadataConfig(
            cache_ttl_s=metadata_data.get('cache_ttl_s', 1800),
            document_timeout_s=metadata_data.get('document_timeout_s', 5.0),
            batch_size=metadata_data.get('batch_size', 100),
            max_concurrency=metadata_data.get('max_concurrency', 10)
        )

        refresh_data = config.get('refresh', {}) or {}
        refresh_config = RefreshConfig(
            interval_s=refresh_data.get('interval_s', 120),
            manual_cooldown_s=refresh_data.get('manual_cooldown_s', 2.0),
            aggregate_cache_ttl_s=refresh_data.get('aggregate_cache_ttl_s', 300),
            demo_fallback=refresh_data.get('demo_fallback', True),
            activity_limit=refresh_data.get('activity_limit', 50),
            activity_parse_limit=refresh_data.get('activity_parse_limit', 10)
        )

        storage_data = config.get('storage', {}) or {}
        storage_config = StorageConfig(
            directory=storage_data.get('directory', "data/launchpad")
        )

        tx_data = config.get('transactions', {}) or {}
        transaction_config = TransactionConfig(
            skip_preflight=tx_data.get('skip_preflight', False),
            simulate_before_send=tx_data.get('simulate_before_send', True),
            commitment=tx_data.get('commitment', "confirmed"),
            confirmation_timeout_s=tx_data.get('confirmation_timeout_s', 60),
            confirmation_poll_interval_s=tx_data.get('confirmation_poll_interval_s', 1.0),
            compute_unit_limit=tx_data.get('compute_unit_limit'),
            compute_unit_price=tx_data.get('compute_unit_price')
        )
        if transaction_config.commitment not in ("processed", "confirmed", "finalized"):
            raise ValueError(f"Unknown commitment level: {transaction_config.commitment}")

        log_data = config.get('logging', {}) or {}
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        metrics_data = config.get('metrics', {}) or {}
        metrics_config = MetricsConfig(
            enable_histogram=metrics_data.get('enable_histogram', True),
            max_samples=metrics_data.get('max_samples', 5000)
        )

        return LaunchpadConfig(
            rpc_config=rpc_config,
            program_config=program_config,
            metadata_config=metadata_config,
            refresh_config=refresh_config,
            storage_config=storage_config,
            transaction_config=transaction_config,
            log_config=log_config,
            metrics_config=metrics_config
        )
