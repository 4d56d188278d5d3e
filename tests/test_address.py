import pytest

from polkapay.address import (
    InvalidAddressError,
    is_valid_address,
    reencode,
    ss58_decode,
    ss58_encode,
)

ALICE_PUBLIC_KEY = "d43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d"
ALICE_GENERIC = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
ALICE_POLKADOT = "15oF4uVJwmo4TdGW7VfQxNLavjCXviqxT9S1MgbjMNHr6Sp5"


def test_encode_known_vectors() -> None:
    assert ss58_encode(ALICE_PUBLIC_KEY, 42) == ALICE_GENERIC
    assert ss58_encode("0x" + ALICE_PUBLIC_KEY, 0) == ALICE_POLKADOT
    assert ss58_encode(bytes.fromhex(ALICE_PUBLIC_KEY)) == ALICE_POLKADOT


def test_decode_returns_prefix_and_key() -> None:
    prefix, public_key = ss58_decode(ALICE_GENERIC)

    assert prefix == 42
    assert public_key.hex() == ALICE_PUBLIC_KEY


def test_two_byte_prefixes_round_trip() -> None:
    key = bytes(range(32))
    for prefix in (64, 255, 2007, 16383):
        address = ss58_encode(key, prefix)
        assert ss58_decode(address) == (prefix, key)


def test_decode_rejects_corrupted_addresses() -> None:
    corrupted = ALICE_POLKADOT[:-1] + ("6" if ALICE_POLKADOT[-1] != "6" else "7")

    with pytest.raises(InvalidAddressError):
        ss58_decode(corrupted)
    with pytest.raises(InvalidAddressError):
        ss58_decode("")
    with pytest.raises(InvalidAddressError):
        ss58_decode("0x1234")
    with pytest.raises(InvalidAddressError):
        ss58_decode(ALICE_POLKADOT[:20])


def test_expected_prefix_is_enforced() -> None:
    assert is_valid_address(ALICE_POLKADOT, expected_prefix=0)
    assert not is_valid_address(ALICE_GENERIC, expected_prefix=0)
    with pytest.raises(InvalidAddressError, match="expected 0"):
        ss58_decode(ALICE_GENERIC, expected_prefix=0)


def test_encode_rejects_bad_keys_and_prefixes() -> None:
    with pytest.raises(InvalidAddressError):
        ss58_encode(b"\x01" * 31)
    with pytest.raises(InvalidAddressError):
        ss58_encode("zz" * 32)
    with pytest.raises(InvalidAddressError):
        ss58_encode(b"\x01" * 32, 16384)


def test_reencode_switches_network() -> None:
    assert reencode(ALICE_GENERIC, 0) == ALICE_POLKADOT
    assert reencode(ALICE_POLKADOT, 42) == ALICE_GENERIC


@pytest.mark.parametrize("prefix", [0, 2, 42, 64, 2007, 16383])
def test_codec_agrees_with_scalecodec(prefix: int) -> None:
    scalecodec_ss58 = pytest.importorskip("scalecodec.utils.ss58")
    key = bytes.fromhex(ALICE_PUBLIC_KEY)

    address = ss58_encode(key, prefix)

    assert address == scalecodec_ss58.ss58_encode(key, ss58_format=prefix)
    assert scalecodec_ss58.ss58_decode(address, valid_ss58_format=prefix) == ALICE_PUBLIC_KEY
