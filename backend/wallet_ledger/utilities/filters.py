"""
Composable filter expressions for repository queries.

Services describe what they want as a small predicate tree and the
repositories compile it into a MongoDB query document, e.g.::

    And(
        Or(Eq("actor_wallet_id", wallet_id), Eq("target_wallet_id", wallet_id)),
        Eq("state", "trusted"),
    ).to_mongo()
"""
import re
from typing import Any, Dict, Iterable, Optional, Union


class Filter:
    """Base node of a filter tree."""

    def to_mongo(self) -> Dict[str, Any]:
        raise NotImplementedError

    def __and__(self, other: "Filter") -> "And":
        return And(self, other)

    def __or__(self, other: "Filter") -> "Or":
        return Or(self, other)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Filter) and self.to_mongo() == other.to_mongo()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.to_mongo()!r})"


class _FieldFilter(Filter):
    operator: Optional[str] = None

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value

    def to_mongo(self) -> Dict[str, Any]:
        return {self.field: {self.operator: self.value}}


class Eq(_FieldFilter):
    def to_mongo(self) -> Dict[str, Any]:
        return {self.field: self.value}


class Ne(_FieldFilter):
    operator = "$ne"


class Gt(_FieldFilter):
    operator = "$gt"


class Gte(_FieldFilter):
    operator = "$gte"


class Lt(_FieldFilter):
    operator = "$lt"


class Lte(_FieldFilter):
    operator = "$lte"


class In(_FieldFilter):
    operator = "$in"

    def __init__(self, field: str, values: Iterable[Any]):
        super().__init__(field, list(values))


class ILike(_FieldFilter):
    """Case-insensitive SQL LIKE: ``%`` matches any run, ``_`` one character."""

    def to_mongo(self) -> Dict[str, Any]:
        return {self.field: {"$regex": like_to_regex(self.value), "$options": "i"}}


class _BoolFilter(Filter):
    operator: str = ""

    def __init__(self, *nodes: Optional["FilterLike"]):
        # None and {} children are dropped so callers can pass optional clauses
        self.nodes = [node for node in nodes if node]

    def _compiled(self):
        return [to_query(node) for node in self.nodes]


class And(_BoolFilter):
    operator = "$and"

    def to_mongo(self) -> Dict[str, Any]:
        compiled = self._compiled()
        if not compiled:
            return {}
        if len(compiled) == 1:
            return compiled[0]
        return {"$and": compiled}


class Or(_BoolFilter):
    operator = "$or"

    def to_mongo(self) -> Dict[str, Any]:
        compiled = self._compiled()
        if not compiled:
            # An empty disjunction matches nothing
            return {"_id": {"$in": []}}
        if len(compiled) == 1:
            return compiled[0]
        return {"$or": compiled}


FilterLike = Union[Filter, Dict[str, Any]]


def like_to_regex(pattern: str) -> str:
    """Translate a LIKE pattern into an anchored regular expression."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return "^" + "".join(parts) + "$"


def to_query(filter_: Optional[FilterLike]) -> Dict[str, Any]:
    """Compile a filter tree (or pass a raw query dict through) for Motor."""
    if filter_ is None:
        return {}
    if isinstance(filter_, Filter):
        return filter_.to_mongo()
    if isinstance(filter_, dict):
        return filter_
    raise TypeError(f"Unsupported filter type: {type(filter_).__name__}")
