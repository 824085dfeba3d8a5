"""
Configuration loaded from .env and environment variables.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import dotenv

logger = logging.getLogger(__name__)

SIMULATION_POLICIES = ("warn", "block")
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


@dataclass
class SwapConfig:
    """Routing and swap-instruction request options."""
    slippage_bps: int = 50
    max_slippage_bps: int = 300
    wrap_and_unwrap_sol: bool = False
    use_shared_accounts: bool = True  # fewer accounts per route
    dynamic_compute_unit_limit: bool = True
    prioritization_fee_lamports: str = "auto"  # "auto" or integer lamports
    requote_max_accounts: Tuple[int, ...] = ()  # stricter maxAccounts values tried after an oversize

    def __post_init__(self):
        if self.slippage_bps < 0 or self.max_slippage_bps < 0:
            raise ValueError("Slippage must be non-negative")
        if self.slippage_bps > self.max_slippage_bps:
            logger.warning(
                f"SLIPPAGE_BPS ({self.slippage_bps}) exceeds MAX_SLIPPAGE_BPS ({self.max_slippage_bps}), "
                f"capping at {self.max_slippage_bps}"
            )
            self.slippage_bps = self.max_slippage_bps
        if self.prioritization_fee_lamports != "auto" and not self.prioritization_fee_lamports.isdigit():
            raise ValueError(
                f"PRIORITIZATION_FEE_LAMPORTS must be 'auto' or an integer, got {self.prioritization_fee_lamports!r}"
            )
        if any(value <= 0 for value in self.requote_max_accounts):
            raise ValueError("REQUOTE_MAX_ACCOUNTS values must be positive")


@dataclass
class ExecutionConfig:
    """Submission, confirmation and retry policy."""
    max_attempts: int = 3  # end-to-end attempts on BlockhashExpired
    broadcast_retries: int = 3
    broadcast_backoff_seconds: float = 0.5
    confirm_timeout_seconds: float = 60.0
    confirm_poll_interval_seconds: float = 1.0
    timeout_repoll_seconds: float = 0.0
    simulation_policy: str = "warn"
    skip_preflight: bool = False
    commitment: str = "confirmed"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("MAX_ATTEMPTS must be at least 1")
        if self.broadcast_retries < 1:
            raise ValueError("BROADCAST_RETRIES must be at least 1")
        if self.confirm_timeout_seconds <= 0:
            raise ValueError("CONFIRM_TIMEOUT_SECONDS must be positive")
        if self.timeout_repoll_seconds < 0:
            raise ValueError("TIMEOUT_REPOLL_SECONDS must be non-negative")
        if self.simulation_policy not in SIMULATION_POLICIES:
            raise ValueError(
                f"SIMULATION_POLICY must be one of {SIMULATION_POLICIES}, got {self.simulation_policy!r}"
            )
        if self.commitment not in COMMITMENT_LEVELS:
            raise ValueError(f"COMMITMENT must be one of {COMMITMENT_LEVELS}, got {self.commitment!r}")


@dataclass
class Settings:
    """Service endpoints plus the swap and execution policies."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    fallback_rpc_url: Optional[str] = None
    jupiter_api_url: str = "https://lite-api.jup.ag/swap/v1"
    jupiter_api_key: Optional[str] = None
    lend_api_url: str = "https://lite-api.jup.ag/lend/v1"
    http_timeout_seconds: float = 10.0
    requests_per_second: float = 1.0
    swap: SwapConfig = field(default_factory=SwapConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int_list(name: str) -> Tuple[int, ...]:
    value = os.getenv(name, '')
    try:
        return tuple(int(part) for part in value.split(',') if part.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be a comma separated list of integers, got {value!r}") from e


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """
    Build Settings from .env (if present) and the process environment.

    Raises:
        ValueError: invalid values
    """
    env_path = env_path or Path.cwd() / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.debug(f".env file not found at {env_path}, using process environment")

    swap = SwapConfig(
        slippage_bps=int(os.getenv('SLIPPAGE_BPS', '50')),
        max_slippage_bps=int(os.getenv('MAX_SLIPPAGE_BPS', '300')),
        wrap_and_unwrap_sol=_env_bool('WRAP_AND_UNWRAP_SOL', False),
        use_shared_accounts=_env_bool('USE_SHARED_ACCOUNTS', True),
        dynamic_compute_unit_limit=_env_bool('DYNAMIC_COMPUTE_UNIT_LIMIT', True),
        prioritization_fee_lamports=os.getenv('PRIORITIZATION_FEE_LAMPORTS', 'auto').strip(),
        requote_max_accounts=_env_int_list('REQUOTE_MAX_ACCOUNTS')
    )

    execution = ExecutionConfig(
        max_attempts=int(os.getenv('MAX_ATTEMPTS', '3')),
        broadcast_retries=int(os.getenv('BROADCAST_RETRIES', '3')),
        broadcast_backoff_seconds=float(os.getenv('BROADCAST_BACKOFF_SECONDS', '0.5')),
        confirm_timeout_seconds=float(os.getenv('CONFIRM_TIMEOUT_SECONDS', '60')),
        confirm_poll_interval_seconds=float(os.getenv('CONFIRM_POLL_INTERVAL_SECONDS', '1.0')),
        timeout_repoll_seconds=float(os.getenv('TIMEOUT_REPOLL_SECONDS', '0')),
        simulation_policy=os.getenv('SIMULATION_POLICY', 'warn').strip().lower(),
        skip_preflight=_env_bool('SKIP_PREFLIGHT', False),
        commitment=os.getenv('COMMITMENT', 'confirmed').strip().lower()
    )

    return Settings(
        rpc_url=os.getenv('RPC_URL', 'https://api.mainnet-beta.solana.com'),
        fallback_rpc_url=os.getenv('FALLBACK_RPC_URL') or None,
        jupiter_api_url=os.getenv('JUPITER_API_URL', 'https://lite-api.jup.ag/swap/v1').rstrip('/'),
        jupiter_api_key=os.getenv('JUPITER_API_KEY') or None,
        lend_api_url=os.getenv('LEND_API_URL', 'https://lite-api.jup.ag/lend/v1').rstrip('/'),
        http_timeout_seconds=float(os.getenv('HTTP_TIMEOUT_SECONDS', '10')),
        requests_per_second=float(os.getenv('JUPITER_REQUESTS_PER_SECOND', '1.0')),
        swap=swap,
        execution=execution
    )
