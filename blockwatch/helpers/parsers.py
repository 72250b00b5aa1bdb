"""Parsing utilities for common data transformations."""


def parse_hex_int(hex_value: str | int | None, default: int = 0) -> int:
    """Parse hex string to integer.

    Integers are returned unchanged so already-decoded values pass through.

    Args:
        hex_value: Hex-encoded string, integer or None
        default: Default value if hex_value is None

    Returns:
        int: Parsed integer value

    Example:
        >>> parse_hex_int("0xff")
        255
        >>> parse_hex_int(None, 0)
        0
    """
    if hex_value is None:
        return default
    if isinstance(hex_value, int):
        return hex_value
    return int(hex_value, 16)


def normalize_address(address: str) -> str:
    """Lower-case an address so lookups do not depend on checksum casing.

    Example:
        >>> normalize_address("0xAbC")
        '0xabc'
    """
    return address.lower()


def topic_to_address(topic: str) -> str:
    """Extract the address stored in the low 20 bytes of a 32-byte log topic.

    Example:
        >>> topic_to_address("0x" + "0" * 24 + "ab" * 20)
        '0xabababababababababababababababababababab'
    """
    return "0x" + topic[-40:].lower()


__all__ = [
    "normalize_address",
    "parse_hex_int",
    "topic_to_address",
]
