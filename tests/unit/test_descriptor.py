"""
Tests for Output Descriptors

Tests the BIP380 checksum and the Taproot contract descriptor.
"""

import pytest

from crypto.keys import PrivateKey
from htlc.descriptor import (
    add_checksum,
    descriptor_checksum,
    format_taproot_descriptor,
    parse_taproot_descriptor,
    split_checksum,
)
from htlc.exceptions import ContractReconstructionError, ValidationError


class TestChecksum:
    """Test BIP380 checksums."""

    def test_known_vector(self):
        """Test the checksum of a raw() descriptor."""
        assert descriptor_checksum("raw(deadbeef)") == "89f8spxm"
        assert add_checksum("raw(deadbeef)") == "raw(deadbeef)#89f8spxm"

    def test_split(self):
        """Test splitting a checksummed descriptor."""
        assert split_checksum("raw(deadbeef)#89f8spxm") == ("raw(deadbeef)", "89f8spxm")

    def test_missing_checksum(self):
        """Test descriptors without a checksum."""
        with pytest.raises(ContractReconstructionError):
            split_checksum("raw(deadbeef)")

    def test_wrong_checksum(self):
        """Test a checksum that does not match the body."""
        with pytest.raises(ContractReconstructionError):
            split_checksum("raw(deadbeee)#89f8spxm")

    def test_invalid_character(self):
        """Test characters outside the descriptor charset."""
        with pytest.raises(ValidationError):
            descriptor_checksum("raw(é)")


class TestTaprootDescriptor:
    """Test the Taproot contract descriptor."""

    def setup_method(self):
        self.internal = PrivateKey.from_int(0xaaaa).public_key()
        self.revocation = PrivateKey.from_int(0xbbbb).public_key()

    def test_format(self):
        """Test the descriptor body."""
        descriptor = format_taproot_descriptor(self.internal, self.revocation, 144)
        body, checksum = descriptor.split("#")

        assert body == f"tr({self.internal.hex},and_v(v:pk({self.revocation.hex}),older(144)))"
        assert checksum == descriptor_checksum(body)

    def test_round_trip(self):
        """Test parsing recovers the parameters."""
        descriptor = format_taproot_descriptor(self.internal, self.revocation, 6)
        assert parse_taproot_descriptor(descriptor) == (self.internal, self.revocation, 6)

    def test_surrounding_whitespace(self):
        """Test descriptors read from files may carry whitespace."""
        descriptor = format_taproot_descriptor(self.internal, self.revocation, 6)
        assert parse_taproot_descriptor(f"  {descriptor}\n")[2] == 6

    def test_other_descriptor_rejected(self):
        """Test a valid but unrelated descriptor."""
        with pytest.raises(ValidationError):
            parse_taproot_descriptor("raw(deadbeef)#89f8spxm")

    def test_tampered_descriptor(self):
        """Test a changed timelock invalidates the checksum."""
        descriptor = format_taproot_descriptor(self.internal, self.revocation, 6)
        with pytest.raises(ContractReconstructionError):
            parse_taproot_descriptor(descriptor.replace("older(6)", "older(7)"))

    def test_invalid_key(self):
        """Test a descriptor naming an x-coordinate beyond the field."""
        body = f"tr(02{'ff' * 32},and_v(v:pk({self.revocation.hex}),older(6)))"
        with pytest.raises(ValidationError):
            parse_taproot_descriptor(add_checksum(body))
