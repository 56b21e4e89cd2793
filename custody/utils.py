"""Shared helpers."""


def format_address(address: str, length: int = 5) -> str:
    """
    Format an address for logging (truncated with ellipsis).

    Args:
        address: Full base58 address
        length: Number of characters to show at start and end

    Returns:
        Formatted string like "7xKXt...9sQpA"
    """
    if len(address) <= length * 2:
        return address
    return f"{address[:length]}...{address[-length:]}"
