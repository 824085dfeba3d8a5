"""
Pytest configuration and fixtures for the swap-and-deposit engine tests.
"""
import base64

import pytest
from unittest.mock import AsyncMock
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from swapdeposit.composer import COMPUTE_BUDGET_PROGRAM_ID, InstructionGroups
from swapdeposit.config import ExecutionConfig


@pytest.fixture
def keypair():
    """Fee payer keypair."""
    return Keypair()


@pytest.fixture
def fee_payer(keypair):
    return keypair.pubkey()


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def jup_mint():
    """JUP mint address."""
    return "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


@pytest.fixture
def make_instruction(fee_payer):
    """
    Factory for instructions signed only by the fee payer.

    Accounts are fresh unique keys unless passed explicitly.
    """
    def _make(program_id=None, accounts=None, data=b"\x01", n_accounts=2):
        program_id = program_id or Pubkey.new_unique()
        if accounts is None:
            accounts = [AccountMeta(fee_payer, True, True)] + [
                AccountMeta(Pubkey.new_unique(), False, True) for _ in range(n_accounts)
            ]
        return Instruction(program_id, data, accounts)
    return _make


@pytest.fixture
def compute_budget_instruction():
    def _make(units=200_000):
        # SetComputeUnitLimit
        return Instruction(COMPUTE_BUDGET_PROGRAM_ID, b"\x02" + units.to_bytes(4, "little"), [])
    return _make


@pytest.fixture
def wire_instruction():
    """Factory for raw service instruction records."""
    def _make(program_id=None, accounts=None, data=b"\x09\x08"):
        return {
            "programId": program_id or str(Pubkey.new_unique()),
            "accounts": accounts if accounts is not None else [
                {"pubkey": str(Pubkey.new_unique()), "isSigner": False, "isWritable": True},
                {"pubkey": str(Pubkey.new_unique()), "isSigner": False, "isWritable": False},
            ],
            "data": base64.b64encode(data).decode("ascii"),
        }
    return _make


@pytest.fixture
def swap_groups(make_instruction, compute_budget_instruction):
    """Swap instruction set with every group populated."""
    return InstructionGroups(
        compute_budget=(compute_budget_instruction(),),
        setup=(make_instruction(data=b"swap-setup"),),
        primary=make_instruction(data=b"swap", n_accounts=4),
        cleanup=(make_instruction(data=b"swap-cleanup"),),
        other=(make_instruction(data=b"swap-other"),)
    )


@pytest.fixture
def deposit_groups(make_instruction):
    return InstructionGroups(
        setup=(make_instruction(data=b"deposit-setup"),),
        primary=make_instruction(data=b"deposit", n_accounts=3)
    )


@pytest.fixture
def lookup_table_for():
    """Build a lookup table snapshot holding the given addresses."""
    def _make(addresses, key=None):
        return AddressLookupTableAccount(key=key or Pubkey.new_unique(), addresses=list(addresses))
    return _make


@pytest.fixture
def mock_solana_client():
    """AsyncMock SolanaClient with a valid blockhash."""
    client = AsyncMock()
    client.get_latest_blockhash.return_value = (Hash.new_unique(), 1_000)
    client.get_current_block_height.return_value = 900
    return client


@pytest.fixture
def fast_execution_config():
    """Execution policy without real waiting."""
    return ExecutionConfig(
        max_attempts=3,
        broadcast_retries=3,
        broadcast_backoff_seconds=0.0,
        confirm_timeout_seconds=0.05,
        confirm_poll_interval_seconds=0.0,
        timeout_repoll_seconds=0.0
    )
