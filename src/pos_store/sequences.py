"""Human-readable sequential identifiers for catalog, sales, customers and orders."""

from __future__ import annotations

from typing import Iterable


def next_sequence_id(existing_ids: Iterable[str], start: int) -> str:
    """Return the next identifier after the highest numeric id in use.

    The result is ``max(numeric ids, start - 1) + 1``. Ids that are not plain
    integers (``"abc"``, ``"12-A"``, UUIDs) are ignored, so an empty
    collection yields ``start`` and gaps are never refilled.

    Two clients that allocate before either syncs can produce the same id;
    the later full-collection replace wins.

    Args:
        existing_ids (Iterable[str]): Ids already present in the collection.
        start (int): Configured first id of the sequence.

    Returns:
        str: The next id as a decimal string.
    """

    highest = start - 1
    for raw in existing_ids:
        text = str(raw).strip()
        if text.isdecimal():
            highest = max(highest, int(text))
    return str(highest + 1)
