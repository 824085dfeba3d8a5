"""
Amount translation between the routing service and the lending service.

Both services speak base units as integer strings. Nothing in the path from
quote to deposit may pass through float or a display-formatted value.
"""
import re
from dataclasses import dataclass
from decimal import Decimal

from .errors import InvalidAmountEncoding

_BASE_UNITS_RE = re.compile(r"[0-9]+")


def _validate_exponent(exponent: int) -> None:
    if isinstance(exponent, bool) or not isinstance(exponent, int) or exponent < 0:
        raise InvalidAmountEncoding(f"Invalid decimal exponent: {exponent!r}")


def to_base_units(routed_output_amount: str, source_exponent: int) -> str:
    """
    Pass a routed output amount through to the deposit request.

    The routing service already reports base units, so the value is returned
    unchanged; anything that is not a plain ASCII digit string is rejected.

    Args:
        routed_output_amount: outAmount from the quote (integer string)
        source_exponent: decimals of the output asset

    Returns:
        The same integer string

    Raises:
        InvalidAmountEncoding: for non-string or non-integer input
    """
    _validate_exponent(source_exponent)
    if not isinstance(routed_output_amount, str) or not _BASE_UNITS_RE.fullmatch(routed_output_amount):
        raise InvalidAmountEncoding(
            f"Amount must be an integer string in base units, got {routed_output_amount!r}"
        )
    return routed_output_amount


@dataclass(frozen=True)
class AmountUnit:
    """Non-negative integer amount in the smallest unit of an asset."""
    base_units: int
    decimals: int

    def __post_init__(self):
        if isinstance(self.base_units, bool) or not isinstance(self.base_units, int) or self.base_units < 0:
            raise InvalidAmountEncoding(f"Base units must be a non-negative integer, got {self.base_units!r}")
        _validate_exponent(self.decimals)

    @classmethod
    def from_base_units(cls, amount: str, decimals: int) -> "AmountUnit":
        return cls(int(to_base_units(amount, decimals)), decimals)

    def to_wire(self) -> str:
        """Integer string for request payloads."""
        return str(self.base_units)

    def to_ui_string(self) -> str:
        """Human readable value for logs only. Never used for ledger amounts."""
        scaled = Decimal(self.base_units).scaleb(-self.decimals)
        return format(scaled, 'f')
