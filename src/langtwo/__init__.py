# All register values are 32-bit signed integers; booleans are encoded as 0/1.
I32_MIN = -(1 << 31)
I32_MAX = (1 << 31) - 1


def wrap_i32(value: int) -> int:
    """wrap an arbitrary python int to 32-bit two's complement"""
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value > I32_MAX else value
