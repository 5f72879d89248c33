"""
Tests for Segwit Addresses

Tests bech32/bech32m encoding against the BIP173, BIP350 and BIP86 vectors.
"""

import pytest

from transactions.address import (
    address_to_script,
    decode_segwit_address,
    encode_segwit_address,
    network_hrp,
    script_to_address,
)
from transactions.exceptions import AddressError


P2WPKH_MAINNET = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
P2WPKH_SCRIPT = "0014751e76e8199196d454941c45d1b3a323f1433bd6"

P2WSH_TESTNET = "tb1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3q0sl5k7"
P2WSH_SCRIPT = "00201863143c14c5166804bd19203356da136c985678cd4d27a1b8c6329604903262"

P2TR_MAINNET = "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
P2TR_SCRIPT = "5120a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c"


class TestAddressVectors:
    """Test published address vectors."""

    def test_p2wpkh(self):
        """Test BIP173 P2WPKH vector."""
        assert address_to_script(P2WPKH_MAINNET).hex() == P2WPKH_SCRIPT
        assert script_to_address(bytes.fromhex(P2WPKH_SCRIPT), "mainnet") == P2WPKH_MAINNET

    def test_uppercase_accepted(self):
        """Test all-uppercase addresses decode."""
        assert address_to_script(P2WPKH_MAINNET.upper()).hex() == P2WPKH_SCRIPT

    def test_p2wsh(self):
        """Test BIP173 P2WSH vector."""
        assert address_to_script(P2WSH_TESTNET).hex() == P2WSH_SCRIPT
        assert script_to_address(bytes.fromhex(P2WSH_SCRIPT), "testnet") == P2WSH_TESTNET

    def test_p2tr(self):
        """Test BIP86 key-path address uses bech32m."""
        assert address_to_script(P2TR_MAINNET).hex() == P2TR_SCRIPT
        assert script_to_address(bytes.fromhex(P2TR_SCRIPT), "mainnet") == P2TR_MAINNET

    def test_regtest_prefix(self):
        """Test regtest addresses use the bcrt prefix."""
        address = script_to_address(bytes.fromhex(P2WSH_SCRIPT), "regtest")
        assert address.startswith("bcrt1q")
        assert address_to_script(address, "regtest").hex() == P2WSH_SCRIPT


class TestAddressErrors:
    """Test rejection of invalid addresses."""

    def test_bad_checksum(self):
        """Test a modified character breaks the checksum."""
        corrupted = P2WPKH_MAINNET[:-1] + ("q" if P2WPKH_MAINNET[-1] != "q" else "p")
        with pytest.raises(AddressError):
            address_to_script(corrupted)

    def test_mixed_case(self):
        """Test mixed-case addresses are rejected."""
        with pytest.raises(AddressError):
            address_to_script("bc1Qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")

    def test_network_mismatch(self):
        """Test an address is checked against the expected network."""
        with pytest.raises(AddressError):
            address_to_script(P2WPKH_MAINNET, "testnet")

    def test_version_covered_by_checksum(self):
        """Test the witness version is covered by the checksum."""
        hrp, _, program = decode_segwit_address(P2TR_MAINNET)
        v0_style = encode_segwit_address(hrp, 0, program)
        # Relabel the witness version without recomputing the checksum
        tampered = v0_style[:3] + "p" + v0_style[4:]
        with pytest.raises(AddressError):
            decode_segwit_address(tampered)

    def test_unknown_network(self):
        """Test unknown network names."""
        with pytest.raises(AddressError):
            network_hrp("litecoin")

    def test_non_witness_script(self):
        """Test rendering a non-witness script fails."""
        with pytest.raises(AddressError):
            script_to_address(bytes.fromhex("76a914" + "00" * 20 + "88ac"))

    def test_v0_program_length(self):
        """Test v0 programs must be 20 or 32 bytes."""
        with pytest.raises(AddressError):
            encode_segwit_address("bc", 0, b'\x00' * 25)

    def test_unsupported_program_length(self):
        """Test programs other than 20, 32 or 40 bytes are refused for encoding."""
        with pytest.raises(AddressError):
            encode_segwit_address("bc", 1, b'\x01' * 10)


class TestLongPrograms:
    """Test the 40-byte witness v1 vector."""

    ADDRESS = "bc1pw508d6qejxtdg4y5r3zarvary0c5xw7kw508d6qejxtdg4y5r3zarvary0c5xw7kt5nd6y"
    SCRIPT = "5128" + "751e76e8199196d454941c45d1b3a323f1433bd6" * 2

    def test_decode(self):
        """Test the BIP350 vector decodes to its output script."""
        assert address_to_script(self.ADDRESS).hex() == self.SCRIPT
        assert decode_segwit_address(self.ADDRESS)[:2] == ("bc", 1)

    def test_encode(self):
        """Test the output script renders back to the same address."""
        assert script_to_address(bytes.fromhex(self.SCRIPT), "mainnet") == self.ADDRESS
