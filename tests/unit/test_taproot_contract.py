"""
Tests for the Taproot Contract

Tests the revocation policy, contract reconstruction from Swap Info and
descriptors, and the spender's build/sign steps.
"""

import pytest

from crypto.keys import PrivateKey
from htlc.exceptions import ContractReconstructionError, TimeoutNotReachedError, ValidationError
from htlc.primitives import SwapInfo
from htlc.taproot_contract import (
    MAX_RELATIVE_TIMELOCK,
    TaprootContract,
    TaprootContractSpender,
    TaprootHTLC,
    build_policy,
)
from transactions.pipeline import SpendPath
from transactions.tx import SEQUENCE_ENABLE_RBF_NO_LOCKTIME


@pytest.fixture
def revocation_key():
    return PrivateKey.from_int(0x4444)


@pytest.fixture
def swap_info(recipient_key, revocation_key):
    return SwapInfo(
        recipient_public_key=recipient_key.public_key(),
        revocation_public_key=revocation_key.public_key(),
        timelock_duration_blocks=6,
        amount_satoshis=50_000,
    )


class TestPolicy:
    """Test the revocation policy."""

    def test_rendering(self, revocation_key):
        """Test policy and miniscript strings."""
        policy = build_policy(revocation_key.public_key(), 144)
        hex_key = revocation_key.public_key().hex

        assert str(policy) == f"and(older(144),pk({hex_key}))"
        assert policy.miniscript == f"and_v(v:pk({hex_key}),older(144))"

    def test_tapscript(self, revocation_key):
        """Test the compiled leaf script."""
        policy = build_policy(revocation_key.public_key(), 144)
        assert policy.tapscript == (
            b'\x20' + revocation_key.public_key().x_only + b'\xad' + b'\x02\x90\x00' + b'\xb2'
        )

    def test_small_timelock_uses_opcode(self, revocation_key):
        """Test timelocks up to 16 compile to OP_n."""
        policy = build_policy(revocation_key.public_key(), 6)
        assert policy.tapscript[-2:] == b'\x56\xb2'

    @pytest.mark.parametrize("blocks", [0, -1, MAX_RELATIVE_TIMELOCK + 1])
    def test_timelock_range(self, revocation_key, blocks):
        """Test the BIP68 block range is enforced."""
        with pytest.raises(ValidationError):
            build_policy(revocation_key.public_key(), blocks)


class TestTaprootContract:
    """Test contract derivation."""

    def test_address_is_taproot(self, swap_info):
        """Test the contract pays to a P2TR output."""
        contract = TaprootContract.from_swap_info(swap_info)
        assert contract.script_pubkey[:2] == b'\x51\x20'
        assert contract.address.startswith("bcrt1p")

    def test_reconstruction_is_deterministic(self, swap_info):
        """Test the same Swap Info rebuilds the same contract."""
        first = TaprootContract.from_swap_info(swap_info)
        second = TaprootContract.from_swap_info(swap_info)
        assert first.descriptor == second.descriptor
        assert first.address == second.address

    def test_from_descriptor(self, swap_info):
        """Test a descriptor rebuilds the same output."""
        contract = TaprootContract.from_swap_info(swap_info)
        rebuilt = TaprootContract.from_descriptor(contract.descriptor)
        assert rebuilt.script_pubkey == contract.script_pubkey

    def test_amount_not_in_descriptor(self, swap_info):
        """Test the amount does not affect the contract."""
        richer = SwapInfo(swap_info.recipient_public_key, swap_info.revocation_public_key,
                          swap_info.timelock_duration_blocks, 1_000_000)
        assert (TaprootContract.from_swap_info(richer).address
                == TaprootContract.from_swap_info(swap_info).address)

    def test_network(self, swap_info):
        """Test the address prefix follows the network."""
        assert TaprootContract.from_swap_info(swap_info, "testnet").address.startswith("tb1p")

    def test_invalid_swap_info(self, swap_info):
        """Test invalid parameters are refused."""
        invalid = SwapInfo(swap_info.recipient_public_key, swap_info.revocation_public_key, 6, 0)
        with pytest.raises(ValidationError):
            TaprootContract.from_swap_info(invalid)


class TestTaprootContractSpender:
    """Test drain construction and signing."""

    def test_key_path_drain(self, chain, swap_info, recipient_key, destination):
        """Test a key-path sweep of every confirmed output."""
        contract = TaprootContract.from_swap_info(swap_info)
        chain.credit(contract.script_pubkey, 30_000)
        chain.credit(contract.script_pubkey, 20_000)
        chain.credit(contract.script_pubkey, 10_000, confirmed=False)

        spender = TaprootContractSpender(chain, contract, recipient_key)
        spender.sync()
        assert spender.balance().confirmed == 50_000
        assert spender.balance().unconfirmed == 10_000

        tx = spender.build_drain(destination, 2, SpendPath.KEY_PATH)
        assert len(tx.inputs) == 2
        assert all(i.sequence == SEQUENCE_ENABLE_RBF_NO_LOCKTIME for i in tx.inputs)
        assert tx.outputs[0].value < 50_000

        finalized, signed = spender.sign(tx, SpendPath.KEY_PATH)
        assert finalized
        assert all(len(i.witness) == 1 and len(i.witness[0]) == 64 for i in signed.inputs)
        assert tx.inputs[0].witness == []

    def test_key_path_wrong_key(self, chain, swap_info, revocation_key, destination):
        """Test a non-internal key does not finalize a key-path spend."""
        contract = TaprootContract.from_swap_info(swap_info)
        chain.credit(contract.script_pubkey, 30_000)

        spender = TaprootContractSpender(chain, contract, revocation_key)
        spender.sync()
        tx = spender.build_drain(destination, 2, SpendPath.KEY_PATH)
        finalized, _ = spender.sign(tx, SpendPath.KEY_PATH)
        assert not finalized

    def test_script_path_requires_maturity(self, chain, swap_info, revocation_key, destination):
        """Test script-path drains wait for N confirmations."""
        contract = TaprootContract.from_swap_info(swap_info)
        chain.credit(contract.script_pubkey, 30_000)
        chain.mine(3)

        spender = TaprootContractSpender(chain, contract, revocation_key)
        spender.sync()
        with pytest.raises(TimeoutNotReachedError) as exc_info:
            spender.build_drain(destination, 2, SpendPath.SCRIPT_PATH)
        assert exc_info.value.blocks_remaining == 2

    def test_script_path_drain(self, chain, swap_info, revocation_key, destination):
        """Test a mature script-path spend."""
        contract = TaprootContract.from_swap_info(swap_info)
        chain.credit(contract.script_pubkey, 30_000)
        chain.mine(5)

        spender = TaprootContractSpender(chain, contract, revocation_key)
        spender.sync()
        tx = spender.build_drain(destination, 2, SpendPath.SCRIPT_PATH)
        assert tx.inputs[0].sequence == 6

        finalized, signed = spender.sign(tx, SpendPath.SCRIPT_PATH)
        witness = signed.inputs[0].witness
        assert finalized
        assert witness[1] == contract.policy.tapscript
        assert witness[2] == contract.output.control_block()

    def test_invalid_destination(self, chain, swap_info, recipient_key):
        """Test destination address validation."""
        contract = TaprootContract.from_swap_info(swap_info)
        spender = TaprootContractSpender(chain, contract, recipient_key)
        with pytest.raises(ValidationError):
            spender.build_drain("bogus", 2, SpendPath.KEY_PATH)


class TestTaprootHTLC:
    """Test descriptor checks on reconstruction."""

    def test_descriptor_mismatch(self, pipeline, swap_info, recipient_key, destination):
        """Test a record whose descriptor differs from the rebuilt one."""
        other = SwapInfo(swap_info.recipient_public_key, swap_info.revocation_public_key, 7, 50_000)
        expected = TaprootContract.from_swap_info(other).descriptor

        with pytest.raises(ContractReconstructionError):
            TaprootHTLC(pipeline).withdraw(swap_info, destination, recipient_key,
                                           expected_descriptor=expected)
