"""
Jupiter routing client: quotes and swap instructions.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .amounts import to_base_units
from .composer import InstructionGroups
from .errors import InvalidAmountEncoding, MalformedInstruction, ServiceUnavailable
from .instruction_codec import decode_json, decode_json_list
from .utils import is_base58_address, short_address

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval rate limiter for routing API requests.

    Burst mode lets a single flow's dependent requests through back to back.
    """

    def __init__(self, requests_per_second: float = 1.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._burst_mode = False
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until the next request is allowed."""
        async with self._lock:
            if self._burst_mode:
                return

            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)

            self._last_request_time = time.monotonic()

    @asynccontextmanager
    async def burst(self):
        """Temporarily disable rate limiting."""
        async with self._lock:
            previous = self._burst_mode
            self._burst_mode = True
        try:
            yield
        finally:
            async with self._lock:
                self._burst_mode = previous


@dataclass
class SwapQuote:
    """
    Quote from the routing service.

    Amounts stay integer strings in base units; `raw` is the opaque response
    passed verbatim to the swap-instructions request.
    """
    input_mint: str
    output_mint: str
    in_amount: str
    out_amount: str
    slippage_bps: int
    price_impact_pct: str
    route_plan: List[Dict[str, Any]]
    raw: Dict[str, Any]
    context_slot: Optional[int] = None
    time_taken: Optional[float] = None

    def route_labels(self) -> List[str]:
        labels = []
        for step in self.route_plan:
            label = (step.get("swapInfo") or {}).get("label")
            if label:
                labels.append(label)
        return labels


@dataclass
class SwapInstructionsResponse:
    """Decoded swap-instructions response."""
    groups: InstructionGroups
    address_lookup_table_addresses: List[str] = field(default_factory=list)
    compute_unit_limit: Optional[int] = None
    prioritization_fee_lamports: Optional[int] = None


class JupiterClient:
    """Client for the Jupiter swap API (quote + swap-instructions)."""

    DEFAULT_API_URL = "https://lite-api.jup.ag/swap/v1"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 1.0,
        max_retries_on_429: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0
    ):
        """
        Args:
            api_url: Base URL of the swap API
            api_key: Sent as x-api-key when provided
            timeout: Request timeout in seconds
            requests_per_second: Rate limit for API requests
            max_retries_on_429: Retries after a 429 response
            backoff_base_seconds: Base of the exponential 429 backoff
            backoff_max_seconds: Cap of the 429 backoff
        """
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    def _backoff_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Perform a request, retrying 429 responses with backoff.

        Raises:
            ServiceUnavailable: network error, non-2xx status or a body that is not a JSON object
        """
        url = f"{self.api_url}{path}"
        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise ServiceUnavailable(f"Unexpected Jupiter {path} response: {type(data).__name__}")
                return data
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429 and attempt < self.max_retries_on_429:
                    wait_time = self._backoff_delay(e.response, attempt)
                    logger.warning(
                        f"Rate limit exceeded (429) for {path}, "
                        f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries_on_429})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise ServiceUnavailable(f"Jupiter {path} failed: {status} - {e.response.text}") from e
            except httpx.TransportError as e:
                raise ServiceUnavailable(f"Jupiter {path} unreachable: {e}") from e
            except ValueError as e:
                raise ServiceUnavailable(f"Jupiter {path} returned invalid JSON: {e}") from e
        raise ServiceUnavailable(f"Jupiter {path} rate limited after {self.max_retries_on_429} retries")

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: str,
        slippage_bps: int = 50,
        max_accounts: Optional[int] = None
    ) -> SwapQuote:
        """
        Quote an exact-in swap.

        Args:
            input_mint: Input asset mint
            output_mint: Output asset mint
            amount: Input amount in base units (integer string)
            slippage_bps: Slippage tolerance in basis points
            max_accounts: Upper bound on accounts used by the route (smaller -> smaller tx)

        Raises:
            InvalidAmountEncoding: amount or outAmount is not an integer string
            ServiceUnavailable: no route or request failure
        """
        amount = to_base_units(amount, 0)
        params: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": amount,
            "slippageBps": slippage_bps,
        }
        if max_accounts is not None:
            params["maxAccounts"] = max_accounts

        started = time.monotonic()
        data = await self._request("GET", "/quote", params=params)

        out_amount = data.get("outAmount")
        if not isinstance(out_amount, str):
            raise InvalidAmountEncoding(f"Quote outAmount must be an integer string, got {out_amount!r}")
        to_base_units(out_amount, 0)

        quote = SwapQuote(
            input_mint=data.get("inputMint", input_mint),
            output_mint=data.get("outputMint", output_mint),
            in_amount=str(data.get("inAmount", amount)),
            out_amount=out_amount,
            slippage_bps=int(data.get("slippageBps", slippage_bps)),
            price_impact_pct=str(data.get("priceImpactPct", "0")),
            route_plan=data.get("routePlan") or [],
            raw=data,
            context_slot=data.get("contextSlot"),
            time_taken=time.monotonic() - started
        )
        logger.debug(
            f"Quote {short_address(input_mint)} -> {short_address(output_mint)}: "
            f"in={quote.in_amount} out={quote.out_amount} impact={quote.price_impact_pct}% "
            f"via {' / '.join(quote.route_labels()) or 'unknown route'}"
        )
        return quote

    async def get_swap_instructions(
        self,
        quote: SwapQuote,
        user_public_key: str,
        wrap_and_unwrap_sol: bool = False,
        use_shared_accounts: bool = True,
        dynamic_compute_unit_limit: bool = True,
        prioritization_fee_lamports: str = "auto"
    ) -> SwapInstructionsResponse:
        """
        Fetch swap instructions for a quote instead of a prebuilt transaction.

        Raises:
            MalformedInstruction: an instruction record failed validation
            ServiceUnavailable: request failure
        """
        payload: Dict[str, Any] = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
            "useSharedAccounts": use_shared_accounts,
            "dynamicComputeUnitLimit": dynamic_compute_unit_limit,
            "prioritizationFeeLamports": (
                prioritization_fee_lamports if prioritization_fee_lamports == "auto"
                else int(prioritization_fee_lamports)
            ),
        }

        data = await self._request("POST", "/swap-instructions", json=payload)
        if data.get("error"):
            raise ServiceUnavailable(f"Jupiter swap-instructions error: {data['error']}")

        swap_instruction = data.get("swapInstruction")
        cleanup_instruction = data.get("cleanupInstruction")
        groups = InstructionGroups(
            compute_budget=tuple(decode_json_list(data.get("computeBudgetInstructions"), "computeBudgetInstructions")),
            setup=tuple(decode_json_list(data.get("setupInstructions"), "setupInstructions")),
            primary=decode_json(swap_instruction) if swap_instruction else None,
            cleanup=(decode_json(cleanup_instruction),) if cleanup_instruction else (),
            other=tuple(decode_json_list(data.get("otherInstructions"), "otherInstructions"))
        )

        raw_tables = data.get("addressLookupTableAddresses") or []
        if not isinstance(raw_tables, list) or not all(is_base58_address(a) for a in raw_tables):
            raise MalformedInstruction(f"addressLookupTableAddresses must be a list of addresses, got {raw_tables!r}")

        response = SwapInstructionsResponse(
            groups=groups,
            address_lookup_table_addresses=list(raw_tables),
            compute_unit_limit=data.get("computeUnitLimit"),
            prioritization_fee_lamports=data.get("prioritizationFeeLamports")
        )
        logger.debug(
            f"Swap instructions: {len(groups.compute_budget)} compute budget, {len(groups.setup)} setup, "
            f"{1 if groups.primary else 0} swap, {len(groups.cleanup)} cleanup, {len(groups.other)} other, "
            f"{len(raw_tables)} lookup tables"
        )
        return response

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
