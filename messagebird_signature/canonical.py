"""
Query-string canonicalization for signed requests.

The sender and the verifier must agree on the exact bytes of the query part
of the signed payload. This module provides:
- Flattening of any supported query representation into (key, value) pairs
- The statusDatetime rewrite (spaces back to '+')
- Stable key sorting and percent-encoding into a single string
"""

from typing import Any, Iterable, List, Mapping, Tuple, Union
from urllib.parse import quote, urlencode


STATUS_DATETIME_FIELD = "statusDatetime"

# Characters the sender's encoder leaves as-is on top of A-Z a-z 0-9 - _ . ~
SAFE_CHARACTERS = "!*'()"

QueryPair = Tuple[str, str]
QueryInput = Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None]


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def query_pairs(query: QueryInput) -> List[QueryPair]:
    """
    Flatten a query representation into a list of string pairs.

    Accepts:
        - None (no query)
        - An object with multi_items() such as starlette's QueryParams
        - A mapping; list or tuple values expand into repeated keys
        - An iterable of (key, value) pairs

    Returns:
        List of (key, value) string tuples in their original order
    """
    if query is None:
        return []

    if hasattr(query, "multi_items"):
        items = query.multi_items()
    elif isinstance(query, Mapping):
        items = []
        for key, value in query.items():
            if isinstance(value, (list, tuple)):
                items.extend((key, element) for element in value)
            else:
                items.append((key, value))
    else:
        items = list(query)

    return [(str(key), _stringify(value)) for key, value in items]


def normalize_status_datetime(pairs: Iterable[QueryPair]) -> List[QueryPair]:
    """
    Replace spaces with '+' in every statusDatetime value.

    The sender signs statusDatetime with a literal '+' but the URL it delivers
    may carry a raw space, which decodes to ' '. Returns a new list; the input
    is left untouched.
    """
    return [
        (key, value.replace(" ", "+")) if key == STATUS_DATETIME_FIELD else (key, value)
        for key, value in pairs
    ]


def canonicalize_query(query: QueryInput) -> str:
    """
    Serialize query parameters into the canonical signed form.

    Pairs are sorted by key with a stable sort, so repeated keys keep their
    relative order and are never de-duplicated.

    Args:
        query: Any input accepted by query_pairs()

    Returns:
        'key=value&key=value' string, or '' for an empty query
    """
    pairs = normalize_status_datetime(query_pairs(query))
    ordered = sorted(pairs, key=lambda pair: pair[0])
    return urlencode(ordered, quote_via=quote, safe=SAFE_CHARACTERS)
