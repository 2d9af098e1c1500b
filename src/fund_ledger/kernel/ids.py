"""
Identifiers for ledger records

Event, budget and transaction ids are UUIDv7-style: the leading 48 bits
are the creation time in milliseconds, so event logs and audit rows sort
by creation time. Disbursement references are short and human readable.
Settlement command ids are derived from the channel reference so that a
replayed callback maps onto the command that already ran.
"""

import secrets
import time


def generate_id() -> str:
    """
    Time-ordered UUID string

    Returns:
        e.g. "01908e9a-3b87-7a1c-9d2e-5f60a1b2c3d4"
    """
    millis = time.time_ns() // 1_000_000 & 0xFFFFFFFFFFFF
    value = (millis << 80) | (0x7 << 76) | (secrets.randbits(12) << 64)
    value |= (0b10 << 62) | secrets.randbits(62)
    hex_value = f"{value:032x}"
    return "-".join(
        (hex_value[:8], hex_value[8:12], hex_value[12:16], hex_value[16:20], hex_value[20:])
    )


def disbursement_reference(prefix: str = "DISB") -> str:
    """
    Reference printed on remittance slips, e.g. "DISB-1736935200000-9f3a"

    Millisecond timestamp plus 16 random bits.
    """
    return f"{prefix}-{time.time_ns() // 1_000_000}-{secrets.token_hex(2)}"


def reversal_reference(reference: str) -> str:
    """Reference of the reversal entry that cancels a disbursement"""
    return f"REV-{reference}"


def settlement_command_id(channel_ref: str) -> str:
    """Command id for a settlement callback; the same channel_ref always maps to the same id"""
    return f"settle:{channel_ref}"
