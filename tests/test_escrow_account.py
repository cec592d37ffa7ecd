"""
Escrow Account Tests
Key loading, address verification and transaction signing
"""

import pytest
from unittest.mock import patch

from eth_account import Account
from web3 import Web3

from config import Config
from services.escrow_account import EscrowAccount
from services.relay_errors import EscrowAddressMismatchError, RelayConfigurationError
from conftest import TEST_ESCROW_PRIVATE_KEY

EXPECTED_ADDRESS = Account.from_key(TEST_ESCROW_PRIVATE_KEY).address


class TestEscrowKey:

    def test_address_derived_from_key(self):
        assert EscrowAccount(TEST_ESCROW_PRIVATE_KEY).address == EXPECTED_ADDRESS

    @pytest.mark.parametrize("key", [None, ""])
    def test_missing_key(self, key):
        with pytest.raises(RelayConfigurationError):
            EscrowAccount(key)

    def test_invalid_key_not_echoed(self):
        with pytest.raises(RelayConfigurationError) as exc_info:
            EscrowAccount("0xnot-a-key")
        assert "not-a-key" not in str(exc_info.value)

    def test_from_config(self):
        with patch.object(Config, "ESCROW_PRIVATE_KEY", TEST_ESCROW_PRIVATE_KEY):
            assert EscrowAccount.from_config().address == EXPECTED_ADDRESS


class TestAddressVerification:

    def test_match_is_case_insensitive(self):
        escrow = EscrowAccount(TEST_ESCROW_PRIVATE_KEY)

        assert escrow.verify_expected_address(EXPECTED_ADDRESS.lower(), fatal=True) is True

    def test_mismatch_warns(self, caplog):
        escrow = EscrowAccount(TEST_ESCROW_PRIVATE_KEY)

        assert escrow.verify_expected_address("0x9c77c6fafc1eb0821F1De12972Ef0199C97C6e45", fatal=False) is False
        assert "Address mismatch" in caplog.text

    def test_mismatch_fatal(self):
        escrow = EscrowAccount(TEST_ESCROW_PRIVATE_KEY)

        with pytest.raises(EscrowAddressMismatchError) as exc_info:
            escrow.verify_expected_address("0x9c77c6fafc1eb0821F1De12972Ef0199C97C6e45", fatal=True)
        assert exc_info.value.actual == EXPECTED_ADDRESS


class TestSigning:

    def test_hash_matches_raw_transaction(self):
        escrow = EscrowAccount(TEST_ESCROW_PRIVATE_KEY)
        tx = {
            "chainId": 42161,
            "nonce": 0,
            "to": Web3.to_checksum_address("0xf197ffc28c23e0309b5559e7a166f2c6164c80aa"),
            "value": 0,
            "data": "0x",
            "gas": 300_000,
            "gasPrice": 10 ** 9,
        }

        raw, tx_hash = escrow.sign_transaction(tx)

        assert isinstance(raw, bytes)
        assert tx_hash == Web3.to_hex(Web3.keccak(raw))
        assert Account.recover_transaction(raw) == EXPECTED_ADDRESS
