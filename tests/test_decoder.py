import pytest

from common.config import RegisterSpec
from common.exceptions import ConfigError, RegisterDecodeError
from services.acquisition.decoder import combine_words, decode_registers


def test_single_word_is_scaled():
    decoded = decode_registers([2305], RegisterSpec(address=0, length=1, multiplier=0.1))
    assert decoded.value == "230.500"
    assert decoded.numeric == pytest.approx(230.5)
    assert decoded.raw == [2305]


def test_two_words_combine_high_word_first():
    decoded = decode_registers([1, 0], RegisterSpec(address=0, length=2, multiplier=0.1))
    assert decoded.value == "6553.600"
    assert decoded.raw == [1, 0]


def test_low_word_only():
    decoded = decode_registers([0, 50], RegisterSpec(address=0, length=2, multiplier=0.1))
    assert decoded.value == "5.000"


def test_full_32_bit_range_is_unsigned():
    assert combine_words([0xFFFF, 0xFFFF], 2) == 0xFFFFFFFF


def test_value_rounded_to_three_decimals():
    decoded = decode_registers([12344], RegisterSpec(address=7, length=1, multiplier=0.0001))
    assert decoded.value == "1.234"


@pytest.mark.parametrize("length", [0, 3, 4])
def test_unsupported_length_fails(length):
    with pytest.raises(RegisterDecodeError):
        decode_registers([1] * max(length, 1), RegisterSpec(address=0, length=length))


def test_word_count_must_match_length():
    with pytest.raises(RegisterDecodeError):
        decode_registers([1], RegisterSpec(address=0, length=2))


def test_word_out_of_range_fails():
    with pytest.raises(RegisterDecodeError):
        decode_registers([0x10000], RegisterSpec(address=0, length=1))


def test_decode_error_is_a_config_error():
    assert issubclass(RegisterDecodeError, ConfigError)
