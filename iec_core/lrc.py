"""
IEC 62056-21 block check character (LRC) calculation module.
"""

from typing import Union


def compute_lrc(data: Union[bytes, bytearray]) -> int:
    """XOR all bytes together, starting from 0."""
    lrc = 0
    for byte in data:
        lrc = (lrc ^ byte) & 0xFF
    return lrc


class BlockCheck:
    """
    Longitudinal redundancy check used as the IEC 62056-21 BCC.

    The BCC covers everything after STX up to and including ETX.
    """

    @classmethod
    def calculate(cls, data: Union[bytes, bytearray]) -> int:
        """Calculate the LRC for given data."""
        return compute_lrc(data)

    @classmethod
    def verify(cls, data: Union[bytes, bytearray], expected: int) -> bool:
        """Verify LRC matches."""
        return cls.calculate(data) == expected


# Quick test
if __name__ == "__main__":
    test_data = bytes([0x02, 0x41, 0x42, 0x03])

    lrc = BlockCheck.calculate(test_data)

    print(f"Test data: {test_data.hex()}")
    print(f"LRC: 0x{lrc:02X}")
