SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(size_bytes: int, decimals: int = 2) -> str:
    """Formats a byte count in binary units, eg. 1536 -> '1.5 KB'."""
    if size_bytes <= 0:
        return "0 Bytes"

    value = float(size_bytes)
    exponent = 0
    while value >= 1024 and exponent < len(SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1

    decimals = max(decimals, 0)
    formatted = f"{value:.{decimals}f}"
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    return f"{formatted} {SIZE_UNITS[exponent]}"


def usage_percentage(size_bytes: int, limit_bytes: int) -> float:
    if limit_bytes <= 0:
        return 0.0
    return size_bytes / limit_bytes * 100
