"""Prefix-length variable integers used as manifest key suffixes.

The number of leading 1 bits in the first byte tells how many extra bytes
follow, so encoded values of the same length sort in numeric order under
LevelDB's bytewise comparator. Values range from 0 to 2^63-1; the largest
ones take 9 bytes with a 0xFF first byte.
"""

_MAX_VALUE = (1 << 63) - 1


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer.

    Raises:
        ValueError: If value is negative or larger than 2^63-1
    """
    if value < 0:
        raise ValueError(f"Cannot encode negative value: {value}")
    if value > _MAX_VALUE:
        raise ValueError(f"Value {value} exceeds maximum (2^63-1)")

    byte_count = 1
    while byte_count < 9 and value >= 1 << (7 * byte_count):
        byte_count += 1

    if byte_count == 9:
        return b'\xff' + value.to_bytes(8, byteorder='big')

    prefix = (0xFF << (9 - byte_count)) & 0xFF
    encoded = bytearray(value.to_bytes(byte_count, byteorder='big'))
    encoded[0] |= prefix
    return bytes(encoded)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode the integer starting at offset.

    Returns:
        Tuple of (decoded_value, bytes_consumed)

    Raises:
        ValueError: If data is truncated or offset is out of range
    """
    if offset >= len(data):
        raise ValueError("Offset exceeds data length")

    first_byte = data[offset]
    if first_byte == 0xFF:
        byte_count = 9
    else:
        byte_count = 1
        while first_byte & (0x80 >> (byte_count - 1)):
            byte_count += 1

    if offset + byte_count > len(data):
        raise ValueError(f"Insufficient data: need {byte_count} bytes, have {len(data) - offset}")

    if byte_count == 9:
        return int.from_bytes(data[offset + 1:offset + 9], byteorder='big'), 9

    value = first_byte & (0xFF >> byte_count)
    for b in data[offset + 1:offset + byte_count]:
        value = (value << 8) | b

    return value, byte_count
