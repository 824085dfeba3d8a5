"""
Terminal and formatting helpers shared by the engine's log output.
"""
import re
import sys
from typing import Dict

BASE58_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def get_terminal_colors() -> Dict[str, str]:
    """
    ANSI color codes for log highlighting.

    Every value is an empty string when stdout is not a TTY so that
    swap_deposit.log never contains escape sequences.
    """
    use_color = sys.stdout.isatty()

    def code(seq: str) -> str:
        return seq if use_color else ''

    return {
        'GREEN': code('\033[92m'),   # counts, sizes, confirmed outcomes
        'CYAN': code('\033[96m'),    # addresses, signatures, state names
        'YELLOW': code('\033[93m'),  # amounts, limits, block heights
        'RED': code('\033[91m'),     # failures and rejected transactions
        'DIM': code('\033[90m'),     # retries and background chatter
        'RESET': code('\033[0m'),
    }


def short_address(address: object, keep: int = 4) -> str:
    """Shorten a base58 address or signature to 'abcd..wxyz' for logs."""
    text = str(address)
    if len(text) <= keep * 2 + 2:
        return text
    return f"{text[:keep]}..{text[-keep:]}"


def is_base58_address(value: object) -> bool:
    """Cheap shape check for a base58 account address."""
    return isinstance(value, str) and bool(BASE58_ADDRESS_RE.match(value))
