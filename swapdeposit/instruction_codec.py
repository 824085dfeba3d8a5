"""
Conversion between service wire instructions and solders Instruction objects.

Wire format (as returned by the swap-instructions and deposit-instructions
services):

    {
        "programId": "<base58>",
        "accounts": [{"pubkey": "<base58>", "isSigner": bool, "isWritable": bool}, ...],
        "data": "<base64>"
    }

Loosely typed records are validated eagerly here; nothing partially valid is
allowed to reach composition.
"""
import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .errors import MalformedInstruction


@dataclass(frozen=True)
class WireAccountMeta:
    """Account entry of a wire instruction."""
    pubkey: str
    is_signer: bool
    is_writable: bool

    def to_json(self) -> Dict[str, Any]:
        return {"pubkey": self.pubkey, "isSigner": self.is_signer, "isWritable": self.is_writable}


@dataclass(frozen=True)
class WireInstruction:
    """Single instruction as carried over JSON."""
    program_id: str
    accounts: Tuple[WireAccountMeta, ...]
    data: str

    @classmethod
    def from_json(cls, payload: Any) -> "WireInstruction":
        """
        Parse a service record into a WireInstruction.

        Raises:
            MalformedInstruction: missing fields or wrong field types
        """
        if not isinstance(payload, dict):
            raise MalformedInstruction(f"Instruction must be an object, got {type(payload).__name__}")

        program_id = payload.get("programId")
        if not isinstance(program_id, str) or not program_id:
            raise MalformedInstruction("Instruction is missing programId")

        raw_accounts = payload.get("accounts")
        if not isinstance(raw_accounts, list):
            raise MalformedInstruction(f"Instruction for {program_id} has no account list")

        accounts = []
        for index, entry in enumerate(raw_accounts):
            # Bare address strings carry no signer/writable flags and cannot be compiled
            if not isinstance(entry, dict):
                raise MalformedInstruction(
                    f"Account #{index} of {program_id} must be an object with isSigner/isWritable flags"
                )
            pubkey = entry.get("pubkey")
            is_signer = entry.get("isSigner")
            is_writable = entry.get("isWritable")
            if not isinstance(pubkey, str) or not isinstance(is_signer, bool) or not isinstance(is_writable, bool):
                raise MalformedInstruction(f"Account #{index} of {program_id} is malformed: {entry!r}")
            accounts.append(WireAccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=is_writable))

        data = payload.get("data", "")
        if not isinstance(data, str):
            raise MalformedInstruction(f"Instruction data for {program_id} must be a base64 string")

        return cls(program_id=program_id, accounts=tuple(accounts), data=data)

    def to_json(self) -> Dict[str, Any]:
        return {
            "programId": self.program_id,
            "accounts": [account.to_json() for account in self.accounts],
            "data": self.data,
        }


def _parse_pubkey(value: str, what: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise MalformedInstruction(f"Invalid {what} address {value!r}: {e}") from e


def decode(wire: WireInstruction) -> Instruction:
    """
    Decode a wire instruction into an executable solders Instruction.

    Raises:
        MalformedInstruction: invalid program id, account address or payload
    """
    program_id = _parse_pubkey(wire.program_id, "program")

    accounts = [
        AccountMeta(
            pubkey=_parse_pubkey(meta.pubkey, "account"),
            is_signer=meta.is_signer,
            is_writable=meta.is_writable
        )
        for meta in wire.accounts
    ]

    try:
        data = base64.b64decode(wire.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInstruction(f"Instruction data for {wire.program_id} is not valid base64: {e}") from e

    return Instruction(program_id=program_id, accounts=accounts, data=data)


def encode(instruction: Instruction) -> WireInstruction:
    """Inverse of decode."""
    return WireInstruction(
        program_id=str(instruction.program_id),
        accounts=tuple(
            WireAccountMeta(
                pubkey=str(meta.pubkey),
                is_signer=meta.is_signer,
                is_writable=meta.is_writable
            )
            for meta in instruction.accounts
        ),
        data=base64.b64encode(bytes(instruction.data)).decode('ascii')
    )


def decode_json(payload: Any) -> Instruction:
    """Validate and decode a raw service record in one step."""
    return decode(WireInstruction.from_json(payload))


def decode_json_list(payloads: Any, group: str) -> List[Instruction]:
    """Decode an optional list of raw records; None means an empty group."""
    if payloads is None:
        return []
    if not isinstance(payloads, list):
        raise MalformedInstruction(f"'{group}' must be a list of instructions")
    return [decode_json(payload) for payload in payloads]


def instruction_fingerprint(instruction: Instruction) -> str:
    """Structural hash of program id, account metas and data."""
    parts = [str(instruction.program_id)]
    for account in instruction.accounts:
        parts.append(f"{account.pubkey}:{account.is_signer}:{account.is_writable}")
    parts.append(base64.b64encode(bytes(instruction.data)).decode('ascii'))
    return hashlib.sha256("|".join(parts).encode()).hexdigest()

