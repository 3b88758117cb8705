"""Logging utility functions."""

from typing import Optional


def mask_amount(amount: float, show_relative: bool = True) -> str:
    """
    Mask financial amounts in logs to prevent exposure of sensitive values.

    Args:
        amount: The amount to mask
        show_relative: If True, show relative scale (e.g., "~$X.XXk") instead of exact amount

    Returns:
        Masked string representation (e.g., "~$5.00k" instead of "$5000.00")
    """
    if not show_relative:
        return "[REDACTED]"
    sign = "-" if amount < 0 else ""
    magnitude = abs(amount)
    if magnitude >= 1000000:
        return f"{sign}~${magnitude/1000000:.2f}M"
    elif magnitude >= 1000:
        return f"{sign}~${magnitude/1000:.2f}k"
    else:
        return f"{sign}~${magnitude:.2f}"


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Mask a cookie or token for logging.

    Args:
        value: Secret to mask
        visible: Number of leading characters to keep

    Returns:
        Short prefix plus length (e.g., "abcd***(42 chars)"), or "<empty>"
    """
    if not value:
        return "<empty>"
    if len(value) <= visible:
        return f"***({len(value)} chars)"
    return f"{value[:visible]}***({len(value)} chars)"
