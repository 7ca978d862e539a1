"""
Dictionary Compression Codec - LZ-string URI-component format

The BPJS API compresses its JSON payload with LZ-string's
``compressToEncodedURIComponent`` before encrypting it. This module decodes that
format (and encodes it, for tests and tooling) without any third-party package.

Stream layout:
- every input character maps to 6 bits through the URI-safe alphabet, most
  significant bit first
- every value inside the stream is written least significant bit first
- a 2-bit selector introduces the first literal (0: 8-bit, 1: 16-bit, 2: empty)
- afterwards each code has the current dictionary width; 0 and 1 introduce new
  literals, 2 terminates, anything else is a dictionary reference

Usage:
    from utils.compression import decompress_from_encoded_uri_component

    text = decompress_from_encoded_uri_component(payload)
"""

from collections.abc import Iterable

URI_SAFE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+-$"
BITS_PER_CHAR = 6

_REVERSE_ALPHABET = {char: index for index, char in enumerate(URI_SAFE_ALPHABET)}

_LITERAL_8 = 0
_LITERAL_16 = 1
_END_OF_STREAM = 2


class DecompressionError(ValueError):
    """The compressed stream is malformed; no partial output is produced."""


class _BitReader:
    """Reads LSB-first values out of 6-bit alphabet symbols."""

    def __init__(self, values: list[int]) -> None:
        self._values = values
        self._reset = 1 << (BITS_PER_CHAR - 1)
        self.position = self._reset
        self.index = 1
        self.value = values[0] if values else 0

    def _next_value(self) -> int:
        # Reading past the end yields zero bits; the caller checks for truncation.
        value = self._values[self.index] if self.index < len(self._values) else 0
        self.index += 1
        return value

    def read(self, width: int) -> int:
        bits = 0
        for shift in range(width):
            if self.value & self.position:
                bits |= 1 << shift
            self.position >>= 1
            if self.position == 0:
                self.position = self._reset
                self.value = self._next_value()
        return bits


def _from_code_units(units: Iterable[str]) -> str:
    """Join UTF-16 code units, pairing surrogates into real characters."""
    joined = "".join(units)
    return joined.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")


def _to_code_units(text: str) -> list[str]:
    raw = text.encode("utf-16-le", "surrogatepass")
    return [chr(int.from_bytes(raw[i:i + 2], "little")) for i in range(0, len(raw), 2)]


def decompress_from_encoded_uri_component(compressed: str | None) -> str:
    """
    Decode an LZ-string URI-component payload.

    Args:
        compressed: Compressed text over the 65-symbol URI-safe alphabet

    Returns:
        Decoded text; empty input or an empty-stream selector gives ""

    Raises:
        DecompressionError: On unknown symbols, truncated input or a back-reference
            outside the dictionary
    """
    if not compressed:
        return ""

    safe = compressed.replace(" ", "+")
    try:
        values = [_REVERSE_ALPHABET[char] for char in safe]
    except KeyError as e:
        raise DecompressionError(f"Invalid character in compressed input: {e.args[0]!r}") from e

    return _decompress(values)


def _decompress(values: list[int]) -> str:
    length = len(values)
    reader = _BitReader(values)

    selector = reader.read(2)
    if selector == _END_OF_STREAM:
        return ""
    if selector == _LITERAL_8:
        literal = chr(reader.read(8))
    elif selector == _LITERAL_16:
        literal = chr(reader.read(16))
    else:
        raise DecompressionError(f"Invalid stream selector: {selector}")

    # Codes 0-2 are reserved; their placeholders keep indexes aligned.
    dictionary = ["0", "1", "2", literal]
    enlarge_in = 4
    num_bits = 3
    previous = literal
    result = [literal]

    while True:
        if reader.index > length:
            raise DecompressionError("Compressed input ended before the end-of-stream marker")

        code = reader.read(num_bits)

        if code == _LITERAL_8 or code == _LITERAL_16:
            dictionary.append(chr(reader.read(8 if code == _LITERAL_8 else 16)))
            code = len(dictionary) - 1
            enlarge_in -= 1
        elif code == _END_OF_STREAM:
            return _from_code_units(result)

        if enlarge_in == 0:
            enlarge_in = 1 << num_bits
            num_bits += 1

        if code < len(dictionary):
            entry = dictionary[code]
        elif code == len(dictionary):
            entry = previous + previous[0]
        else:
            raise DecompressionError(
                f"Back-reference {code} outside dictionary of size {len(dictionary)}"
            )

        result.append(entry)
        dictionary.append(previous + entry[0])
        enlarge_in -= 1
        previous = entry

        if enlarge_in == 0:
            enlarge_in = 1 << num_bits
            num_bits += 1


class _BitWriter:
    """Mirror of ``_BitReader``: packs LSB-first values into alphabet symbols."""

    def __init__(self) -> None:
        self.symbols: list[str] = []
        self.value = 0
        self.position = 0

    def write(self, value: int, width: int) -> None:
        for _ in range(width):
            self.value = (self.value << 1) | (value & 1)
            value >>= 1
            if self.position == BITS_PER_CHAR - 1:
                self.symbols.append(URI_SAFE_ALPHABET[self.value])
                self.position = 0
                self.value = 0
            else:
                self.position += 1

    def flush(self) -> str:
        # Always emits at least one padding symbol after the terminator.
        while True:
            self.value <<= 1
            if self.position == BITS_PER_CHAR - 1:
                self.symbols.append(URI_SAFE_ALPHABET[self.value])
                break
            self.position += 1
        return "".join(self.symbols)


def compress_to_encoded_uri_component(text: str | None) -> str:
    """Encode text in the format read by :func:`decompress_from_encoded_uri_component`."""
    if text is None:
        return ""

    writer = _BitWriter()
    dictionary: dict[str, int] = {}
    pending_literals: set[str] = set()
    enlarge_in = 2
    dict_size = 3
    num_bits = 2
    current = ""

    def emit(token: str) -> None:
        nonlocal enlarge_in, num_bits
        if token in pending_literals:
            char_code = ord(token[0])
            if char_code < 256:
                writer.write(_LITERAL_8, num_bits)
                writer.write(char_code, 8)
            else:
                writer.write(_LITERAL_16, num_bits)
                writer.write(char_code, 16)
            enlarge_in -= 1
            if enlarge_in == 0:
                enlarge_in = 1 << num_bits
                num_bits += 1
            pending_literals.discard(token)
        else:
            writer.write(dictionary[token], num_bits)

        enlarge_in -= 1
        if enlarge_in == 0:
            enlarge_in = 1 << num_bits
            num_bits += 1

    for char in _to_code_units(text):
        if char not in dictionary:
            dictionary[char] = dict_size
            dict_size += 1
            pending_literals.add(char)

        extended = current + char
        if extended in dictionary:
            current = extended
            continue

        emit(current)
        dictionary[extended] = dict_size
        dict_size += 1
        current = char

    if current:
        emit(current)

    writer.write(_END_OF_STREAM, num_bits)
    return writer.flush()
