from __future__ import annotations

import pytest

from utils.compression import (
    DecompressionError,
    compress_to_encoded_uri_component,
    decompress_from_encoded_uri_component,
)

# selector=0, literal 'a' (8 bits), terminator code 2 (3 bits), padded
SINGLE_A = "IZA"
# selector=0, literal 'a', then back-reference 7 while the dictionary holds 4 entries
OUT_OF_RANGE_REFERENCE = "Ibg"
# selector=1, 16-bit literal 'A' filling exactly three symbols, no terminator
UNTERMINATED = "oIA"


def test_decodes_hand_packed_single_literal() -> None:
    assert decompress_from_encoded_uri_component(SINGLE_A) == "a"


def test_empty_input_decodes_to_empty_string() -> None:
    assert decompress_from_encoded_uri_component("") == ""
    assert decompress_from_encoded_uri_component(None) == ""


def test_end_of_stream_selector_returns_empty_output() -> None:
    # first two bits read 0 then 1 -> selector 2
    assert decompress_from_encoded_uri_component("Q") == ""


def test_out_of_range_back_reference_is_a_hard_failure() -> None:
    with pytest.raises(DecompressionError, match="Back-reference 7"):
        decompress_from_encoded_uri_component(OUT_OF_RANGE_REFERENCE)


def test_unknown_symbol_is_rejected() -> None:
    with pytest.raises(DecompressionError, match="Invalid character"):
        decompress_from_encoded_uri_component("IZ=")


def test_stream_without_terminator_fails_instead_of_returning_partial_text() -> None:
    with pytest.raises(DecompressionError, match="ended before"):
        decompress_from_encoded_uri_component(UNTERMINATED)


@pytest.mark.parametrize(
    "text",
    [
        "a",
        "aaaaaaaaaaaaaaaaaaaa",
        "abababababababababab",
        "TOBEORNOTTOBEORTOBEORNOT",
        '{"url":"https://icare.bpjs-kesehatan.go.id/IHS/validasi?token=eyJhbGciOi"}',
        "Rumah Sakit Umum Daerah – Poli Penyakit Dalam",
        "emoji \U0001f3e5 and CJK 医院",
    ],
)
def test_companion_encoder_round_trip(text: str) -> None:
    compressed = compress_to_encoded_uri_component(text)

    assert set(compressed) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+-$")
    assert decompress_from_encoded_uri_component(compressed) == text


def test_spaces_are_read_as_plus_signs() -> None:
    text = "".join(chr(c) for c in range(32, 127)) * 4
    compressed = compress_to_encoded_uri_component(text)

    assert decompress_from_encoded_uri_component(compressed.replace("+", " ")) == text


def test_empty_string_compresses_to_end_of_stream_marker() -> None:
    assert compress_to_encoded_uri_component("") == "Q"
    assert compress_to_encoded_uri_component(None) == ""
