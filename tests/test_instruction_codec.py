"""
Tests for instruction_codec.py
"""
import pytest
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from swapdeposit.errors import MalformedInstruction
from swapdeposit.instruction_codec import (
    WireAccountMeta,
    WireInstruction,
    decode,
    decode_json,
    decode_json_list,
    encode,
    instruction_fingerprint,
)


class TestWireInstruction:
    """Tests for parsing raw service records."""

    def test_from_json_parses_fields(self, wire_instruction):
        payload = wire_instruction()
        wire = WireInstruction.from_json(payload)

        assert wire.program_id == payload["programId"]
        assert len(wire.accounts) == 2
        assert wire.accounts[0] == WireAccountMeta(payload["accounts"][0]["pubkey"], False, True)
        assert wire.data == payload["data"]

    def test_to_json_matches_service_format(self, wire_instruction):
        payload = wire_instruction()
        assert WireInstruction.from_json(payload).to_json() == payload

    def test_missing_data_defaults_to_empty(self, wire_instruction):
        payload = wire_instruction()
        del payload["data"]
        assert bytes(decode_json(payload).data) == b""

    @pytest.mark.parametrize("payload", [
        None,
        "not an instruction",
        {"accounts": [], "data": ""},
        {"programId": "", "accounts": [], "data": ""},
    ])
    def test_rejects_non_objects_and_missing_program(self, payload):
        with pytest.raises(MalformedInstruction):
            WireInstruction.from_json(payload)

    def test_rejects_missing_accounts(self, wire_instruction):
        payload = wire_instruction()
        payload["accounts"] = None
        with pytest.raises(MalformedInstruction, match="no account list"):
            WireInstruction.from_json(payload)

    def test_rejects_bare_address_accounts(self, wire_instruction):
        """Accounts without signer/writable flags cannot be compiled."""
        payload = wire_instruction()
        payload["accounts"] = [str(Pubkey.new_unique())]
        with pytest.raises(MalformedInstruction, match="isSigner/isWritable"):
            WireInstruction.from_json(payload)

    @pytest.mark.parametrize("entry", [
        {"pubkey": None, "isSigner": False, "isWritable": True},
        {"pubkey": "11111111111111111111111111111111", "isSigner": "no", "isWritable": True},
        {"pubkey": "11111111111111111111111111111111", "isSigner": False},
    ])
    def test_rejects_malformed_account_entries(self, wire_instruction, entry):
        payload = wire_instruction()
        payload["accounts"] = [entry]
        with pytest.raises(MalformedInstruction):
            WireInstruction.from_json(payload)

    def test_rejects_non_string_data(self, wire_instruction):
        payload = wire_instruction()
        payload["data"] = [1, 2, 3]
        with pytest.raises(MalformedInstruction, match="base64"):
            WireInstruction.from_json(payload)


class TestDecode:
    """Tests for decode / encode."""

    def test_decode_builds_instruction(self, wire_instruction):
        payload = wire_instruction(data=b"\x01\x02\x03")
        ix = decode_json(payload)

        assert isinstance(ix, Instruction)
        assert str(ix.program_id) == payload["programId"]
        assert bytes(ix.data) == b"\x01\x02\x03"
        assert [str(meta.pubkey) for meta in ix.accounts] == [a["pubkey"] for a in payload["accounts"]]
        assert [meta.is_writable for meta in ix.accounts] == [True, False]

    def test_invalid_program_id(self, wire_instruction):
        payload = wire_instruction(program_id="not-a-base58-key!")
        with pytest.raises(MalformedInstruction, match="program"):
            decode_json(payload)

    def test_invalid_account_address(self, wire_instruction):
        payload = wire_instruction(accounts=[{"pubkey": "0OIl", "isSigner": False, "isWritable": False}])
        with pytest.raises(MalformedInstruction, match="account"):
            decode_json(payload)

    def test_invalid_base64_payload(self, wire_instruction):
        payload = wire_instruction()
        payload["data"] = "***not base64***"
        with pytest.raises(MalformedInstruction, match="base64"):
            decode_json(payload)

    def test_round_trip(self, fee_payer):
        """decode(encode(x)) == x for a valid instruction."""
        ix = Instruction(
            Pubkey.new_unique(),
            bytes(range(64)),
            [
                AccountMeta(fee_payer, True, True),
                AccountMeta(Pubkey.new_unique(), False, False),
                AccountMeta(Pubkey.new_unique(), False, True),
            ]
        )
        assert decode(encode(ix)) == ix

    def test_round_trip_empty_data_and_accounts(self):
        ix = Instruction(Pubkey.new_unique(), b"", [])
        assert decode(encode(ix)) == ix

    def test_encode_is_inverse_on_wire_side(self, wire_instruction):
        payload = wire_instruction()
        assert encode(decode_json(payload)).to_json() == payload


class TestHelpers:
    """Tests for list decoding and fingerprints."""

    def test_decode_json_list_none_is_empty(self):
        assert decode_json_list(None, "setupInstructions") == []

    def test_decode_json_list_requires_list(self, wire_instruction):
        with pytest.raises(MalformedInstruction, match="setupInstructions"):
            decode_json_list(wire_instruction(), "setupInstructions")

    def test_decode_json_list_fails_on_any_bad_record(self, wire_instruction):
        with pytest.raises(MalformedInstruction):
            decode_json_list([wire_instruction(), {"programId": "x"}], "otherInstructions")

    def test_fingerprint_is_structural(self, make_instruction):
        ix = make_instruction(data=b"same")
        copy = Instruction(ix.program_id, bytes(ix.data), list(ix.accounts))
        other = Instruction(ix.program_id, b"different", list(ix.accounts))

        assert instruction_fingerprint(ix) == instruction_fingerprint(copy)
        assert instruction_fingerprint(ix) != instruction_fingerprint(other)

    def test_fingerprint_sees_account_flags(self):
        program_id = Pubkey.new_unique()
        account = Pubkey.new_unique()
        readonly = Instruction(program_id, b"x", [AccountMeta(account, False, False)])
        writable = Instruction(program_id, b"x", [AccountMeta(account, False, True)])

        assert instruction_fingerprint(readonly) != instruction_fingerprint(writable)
