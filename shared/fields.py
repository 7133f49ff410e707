"""
Field-name resolution and ordering at the store-to-model boundary.

Stored documents may use field names from older schema versions. Each
model declares an alias table mapping its canonical field name to the
legacy names it accepts, in order of preference:

    {"created_at": ("createdAt", "creado")}

Precedence is deterministic: the canonical name wins whenever it is
present in the document (even with a ``None`` value); otherwise the first
legacy alias present in table order is used. Fields not mentioned in the
table are copied through unchanged and legacy keys never leak into the
result.
"""

from functools import cmp_to_key
from typing import Any, Mapping, Sequence

AliasTable = Mapping[str, tuple[str, ...]]


def resolve_aliases(document: Mapping[str, Any], aliases: AliasTable) -> dict[str, Any]:
    """
    Map a raw stored document onto canonical field names.

    Args:
        document: Raw document as returned by the document store.
        aliases: Canonical field name -> legacy names, most preferred first.

    Returns:
        A new dict keyed by canonical names.
    """
    legacy_names = {name for names in aliases.values() for name in names}
    resolved = {
        key: value
        for key, value in document.items()
        if key not in legacy_names or key in aliases
    }

    for canonical, legacy in aliases.items():
        if canonical in document:
            resolved[canonical] = document[canonical]
            continue
        for name in legacy:
            if name in document:
                resolved[canonical] = document[name]
                break

    return resolved


def _compare(left: Any, right: Any) -> int:
    try:
        if left < right:
            return -1
        if left > right:
            return 1
        return 0
    except TypeError:
        # Mixed types across schema versions; fall back to a textual order
        return (str(left) > str(right)) - (str(left) < str(right))


def order_documents(
    documents: list[Mapping[str, Any]],
    clauses: Sequence[tuple[str, bool]],
) -> list[Mapping[str, Any]]:
    """
    Stable multi-key sort of documents.

    Args:
        documents: Documents to sort; the input list is not modified.
        clauses: (field, descending) pairs, most significant first.

    Returns:
        A new list. Documents missing a field (or holding None) sort after
        those that have it, whatever the direction. Ties keep input order.
    """
    if not clauses:
        return list(documents)

    def compare(a: Mapping[str, Any], b: Mapping[str, Any]) -> int:
        for field, descending in clauses:
            left, right = a.get(field), b.get(field)
            if left is None and right is None:
                continue
            if left is None:
                return 1
            if right is None:
                return -1
            result = _compare(left, right)
            if result:
                return -result if descending else result
        return 0

    return sorted(documents, key=cmp_to_key(compare))
