from typing import Optional, Tuple


def page_window(start: Optional[int] = 1, limit: Optional[int] = None) -> Optional[Tuple[int, Optional[int]]]:
    """
    Translate a 1-based ``start`` position and a ``limit`` into skip/limit values.

    Args:
        start: 1-based position of the first item to return
        limit: Maximum number of items (None for no limit)

    Returns:
        (offset, limit) tuple, or None when the window is empty
    """
    if start is None:
        start = 1
    if start < 1 or (limit is not None and limit <= 0):
        return None
    return start - 1, limit
