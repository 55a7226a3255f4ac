"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import pytest
from typing import Any, Callable, Dict, Optional

from solders.pubkey import Pubkey

from launchpad.core.addresses import AddressDeriver
from launchpad.core.config import ProgramConfig, RPCConfig, RPCEndpoint
from launchpad.core.layouts import BOUND_POOL_LAYOUT, MINT_LAYOUT, TOKEN_ACCOUNT_LAYOUT
from launchpad.core.metrics import MetricsCollector
from launchpad.core.rpc_manager import AccountInfo
from launchpad.core.storage import MemoryBlobStore


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "rpc": {
            "endpoints": [
                {
                    "url": "https://api.devnet.solana.com",
                    "priority": 0,
                    "label": "solana_labs_devnet",
                    "timeout_ms": 5000
                },
                {
                    "url": "https://api.testnet.solana.com",
                    "priority": 1,
                    "label": "solana_labs_testnet",
                    "timeout_ms": 5000
                }
            ],
            "max_retries": 3,
            "base_delay_ms": 100
        },
        "metadata": {
            "cache_ttl_s": 600,
            "document_timeout_s": 2
        },
        "refresh": {
            "interval_s": 60,
            "manual_cooldown_s": 2,
            "demo_fallback": True
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None
        },
        "metrics": {
            "enable_histogram": True,
            "max_samples": 100
        }
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    import yaml

    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


@pytest.fixture
def test_rpc_config() -> RPCConfig:
    """RPCConfig with three test endpoints and no backoff delay"""
    return RPCConfig(
        endpoints=[
            RPCEndpoint(url="https://rpc-a.test", label="a", priority=0),
            RPCEndpoint(url="https://rpc-b.test", label="b", priority=1),
            RPCEndpoint(url="https://rpc-c.test", label="c", priority=2),
        ],
        max_retries=5,
        base_delay_ms=10
    )


@pytest.fixture
def program_config() -> ProgramConfig:
    return ProgramConfig()


@pytest.fixture
def deriver(program_config) -> AddressDeriver:
    return AddressDeriver(program_config)


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """
    Create fresh metrics collector for each test

    Returns clean MetricsCollector instance
    """
    collector = MetricsCollector(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


# =============================================================================
# ACCOUNT BUFFER FIXTURES
# =============================================================================

def make_pubkey(fill: int) -> Pubkey:
    return Pubkey(bytes([fill]) * 32)


@pytest.fixture
def pool_buffer() -> Callable[..., bytes]:
    """
    Factory for valid 394-byte BoundPool buffers

    Usage:
        data = pool_buffer(meme_mint=mint, quote_tokens=5_000)
    """
    def build(**overrides: Any) -> bytes:
        values = {
            "meme_tokens": 900_000_000,
            "meme_mint": make_pubkey(3),
            "meme_vault": make_pubkey(4),
            "quote_tokens": 1_500_000_000,
            "quote_mint": Pubkey.from_string("So11111111111111111111111111111111111111112"),
            "quote_vault": make_pubkey(5),
            "fee_vault_quote": make_pubkey(6),
            "creator_addr": make_pubkey(7),
            "fee_meme_percent": 0,
            "fee_quote_percent": 1,
            "gamma_m": 800_000_000,
            "decimals_quote": 9,
        }
        values.update(overrides)
        return BOUND_POOL_LAYOUT.encode(values)

    return build


@pytest.fixture
def token_account_info() -> Callable[..., AccountInfo]:
    """Factory for SPL token account AccountInfos"""
    from spl.token.constants import TOKEN_PROGRAM_ID

    def build(mint: Pubkey, owner: Pubkey, amount: int) -> AccountInfo:
        data = TOKEN_ACCOUNT_LAYOUT.encode({"mint": mint, "owner": owner, "amount": amount, "state": 1})
        return AccountInfo(owner=TOKEN_PROGRAM_ID, lamports=2_039_280, data=data)

    return build


@pytest.fixture
def mint_account_info() -> Callable[..., AccountInfo]:
    """Factory for SPL mint AccountInfos"""
    from spl.token.constants import TOKEN_PROGRAM_ID

    def build(supply: int, decimals: int = 6, authority: Optional[Pubkey] = None) -> AccountInfo:
        data = MINT_LAYOUT.encode({
            "mint_authority": authority,
            "supply": supply,
            "decimals": decimals,
            "is_initialized": True,
            "freeze_authority": None,
        })
        return AccountInfo(owner=TOKEN_PROGRAM_ID, lamports=1_461_600, data=data)

    return build


# Integration test markers
def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires network)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>5 seconds)"
    )
    config.addinivalue_line(
        "markers", "rpc: mark test as requiring RPC access"
    )
