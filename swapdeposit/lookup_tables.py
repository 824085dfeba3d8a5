"""
Address lookup table resolution.

A missing table only costs compaction, never correctness, so absent or
undecodable accounts are dropped from the result instead of failing the flow.
Simulation is the backstop for stale snapshots.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.pubkey import Pubkey

from .errors import MalformedInstruction, ResolutionUnavailable
from .solana_client import SolanaClient
from .utils import get_terminal_colors, short_address

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

# getMultipleAccounts accepts at most 100 keys per request
MAX_ACCOUNTS_PER_REQUEST = 100


def _dedupe_refs(refs: Sequence[str]) -> List[str]:
    seen = set()
    return [ref for ref in refs if not (ref in seen or seen.add(ref))]


def decode_lookup_table(key: Pubkey, data: bytes) -> Optional[AddressLookupTableAccount]:
    """Decode on-ledger lookup table account data, None if it is not a valid table."""
    try:
        table = AddressLookupTable.deserialize(data)
    except Exception as e:
        logger.warning(f"Account {short_address(key)} is not a valid lookup table: {e}")
        return None
    return AddressLookupTableAccount(key=key, addresses=list(table.addresses))


class LookupTableResolver:
    """Fetches and decodes lookup tables referenced by the swap instructions."""

    def __init__(self, solana: SolanaClient, chunk_size: int = MAX_ACCOUNTS_PER_REQUEST):
        self.solana = solana
        self.chunk_size = chunk_size

    async def resolve(self, refs: Sequence[str]) -> List[AddressLookupTableAccount]:
        """
        Resolve lookup table addresses into table snapshots.

        Args:
            refs: Lookup table addresses (base58), duplicates allowed

        Returns:
            Resolved tables in reference order; absent tables are omitted

        Raises:
            MalformedInstruction: a reference is not an address
            ResolutionUnavailable: every fetch failed
        """
        addresses = _dedupe_refs(refs)
        if not addresses:
            return []

        try:
            keys = [Pubkey.from_string(address) for address in addresses]
        except ValueError as e:
            raise MalformedInstruction(f"Invalid lookup table address: {e}") from e

        chunks = [keys[i:i + self.chunk_size] for i in range(0, len(keys), self.chunk_size)]
        results = await asyncio.gather(
            *(self.solana.get_multiple_accounts_data(chunk) for chunk in chunks),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if len(failures) == len(chunks):
            raise ResolutionUnavailable(
                f"Could not fetch any of {len(keys)} lookup tables: {failures[-1]}"
            ) from failures[-1]

        tables: List[AddressLookupTableAccount] = []
        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Lookup table fetch failed for {len(chunk)} table(s), continuing without them: {result}"
                )
                continue
            for key, data in zip(chunk, result):
                if data is None:
                    logger.warning(f"Lookup table {short_address(key)} not found on ledger, skipping")
                    continue
                table = decode_lookup_table(key, data)
                if table is not None:
                    tables.append(table)

        logger.debug(
            f"Resolved {colors['GREEN']}{len(tables)}{colors['RESET']}/{len(keys)} lookup tables"
        )
        return tables
