def to_uppercase(value: str | None) -> str | None:
    """
    Converts a string to uppercase if it's not None.
    """
    if value is None:
        return None
    return value.upper()

def to_lowercase(value: str | None) -> str | None:
    """
    Converts a string to lowercase if it's not None.
    """
    if value is None:
        return None
    return value.lower()

def require_positive(value: int) -> int:
    """
    Reject zero and negative sizes (page sizes, queue sizes, length limits).
    """
    if value <= 0:
        raise ValueError(f"must be a positive integer, got {value}")
    return value
