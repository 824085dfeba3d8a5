"""
Jupiter Lend client: deposit instructions for an earn position.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from solders.instruction import Instruction

from .errors import InvalidAmountEncoding, ServiceUnavailable
from .instruction_codec import decode_json_list
from .utils import is_base58_address, short_address

logger = logging.getLogger(__name__)


def validate_deposit_request(asset: str, signer: str, amount: str) -> None:
    """
    Raises:
        ValueError: asset or signer is not a base58 address
        InvalidAmountEncoding: amount is not a positive integer string
    """
    if not is_base58_address(asset):
        raise ValueError(f"Invalid asset address: {asset!r}")
    if not is_base58_address(signer):
        raise ValueError(f"Invalid signer address: {signer!r}")
    if not isinstance(amount, str) or not amount.isascii() or not amount.isdigit():
        raise InvalidAmountEncoding(f"Deposit amount must be an integer string in base units, got {amount!r}")
    if int(amount) <= 0:
        raise InvalidAmountEncoding(f"Deposit amount must be positive, got {amount!r}")


class LendClient:
    """Client for the Jupiter Lend earn API."""

    DEFAULT_API_URL = "https://lite-api.jup.ag/lend/v1"

    def __init__(self, api_url: Optional[str] = None, timeout: float = 10.0, api_key: Optional[str] = None):
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip('/')
        self.timeout = timeout

        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def get_deposit_instructions(self, asset: str, signer: str, amount: str) -> List[Instruction]:
        """
        Fetch the instructions that deposit `amount` of `asset` for `signer`.

        Args:
            asset: Mint of the deposited asset
            signer: Depositor (fee payer) address
            amount: Base units as an integer string, passed through unchanged

        Returns:
            Flat instruction list in service order

        Raises:
            ValueError, InvalidAmountEncoding: invalid request
            ServiceUnavailable: request failure
            MalformedInstruction: an instruction record failed validation
        """
        validate_deposit_request(asset, signer, amount)

        payload: Dict[str, Any] = {"asset": asset, "signer": signer, "amount": amount}
        url = f"{self.api_url}/earn/deposit-instructions"
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ServiceUnavailable(
                f"Lend deposit-instructions failed: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.TransportError as e:
            raise ServiceUnavailable(f"Lend deposit-instructions unreachable: {e}") from e
        except ValueError as e:
            raise ServiceUnavailable(f"Lend deposit-instructions returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ServiceUnavailable(f"Unexpected deposit-instructions response: {type(data).__name__}")

        instructions = decode_json_list(data.get("instructions"), "instructions")
        logger.debug(
            f"Deposit {amount} of {short_address(asset)} for {short_address(signer)}: "
            f"{len(instructions)} instruction(s)"
        )
        return instructions

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
