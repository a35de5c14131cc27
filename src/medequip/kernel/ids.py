"""
Identifier generation

Identifiers are UUIDv7-shaped: a 48-bit millisecond timestamp followed by
random bits, so ids sort roughly by creation time.
"""

import secrets
import time


def generate_id() -> str:
    """
    Generate a time-ordered identifier

    Returns:
        36-character UUID string with version nibble 7
    """
    timestamp_ms = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)

    value = (timestamp_ms << 80) | (0x7 << 76) | (rand_a << 64) | (0b10 << 62) | rand_b
    hex_value = f"{value:032x}"
    return (
        f"{hex_value[:8]}-{hex_value[8:12]}-{hex_value[12:16]}-"
        f"{hex_value[16:20]}-{hex_value[20:]}"
    )
