"""Predicates over raw stored documents.

S3 cannot filter on object content, so predicates are evaluated
client-side with ``matches``. ``to_dict`` renders the same predicate in
the Mongo-style ``$or``/``$and`` form for stores that can run it
natively.

Example:
    >>> p = any_of(Condition("status", FilterOperator.EQ, "active"),
    ...            Condition("score", FilterOperator.GTE, 10))
    >>> p.matches({"status": "active"})
    True
    >>> p.to_dict()
    {'$or': [{'status': {'$eq': 'active'}}, {'score': {'$gte': 10}}]}
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from s3evolve.core.document import MIGRATION_VERSION_FIELD

MISSING = object()


class FilterOperator(str, Enum):
    """Comparison operators supported by Condition."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    EXISTS = "exists"


_MONGO_OPERATORS = {
    FilterOperator.EQ: "$eq",
    FilterOperator.NE: "$ne",
    FilterOperator.GT: "$gt",
    FilterOperator.GTE: "$gte",
    FilterOperator.LT: "$lt",
    FilterOperator.LTE: "$lte",
    FilterOperator.IN: "$in",
    FilterOperator.NOT_IN: "$nin",
    FilterOperator.CONTAINS: "$elemMatch",
    FilterOperator.EXISTS: "$exists",
}


def resolve_path(document: dict[str, Any], path: str) -> Any:
    """Follow a dotted path through nested mappings; MISSING if absent."""
    current: Any = document
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return MISSING
    return current


class Predicate(ABC):
    """A boolean test over a raw document."""

    @abstractmethod
    def matches(self, document: dict[str, Any]) -> bool:
        pass

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        pass

    def __and__(self, other: "Predicate") -> "Predicate":
        return all_of(self, other)

    def __or__(self, other: "Predicate") -> "Predicate":
        return any_of(self, other)

    def __invert__(self) -> "Predicate":
        return negate(self)


@dataclass(frozen=True)
class Condition(Predicate):
    """Compare the value at ``path`` with ``value``."""

    path: str
    operator: FilterOperator
    value: Any = None

    def matches(self, document: dict[str, Any]) -> bool:
        actual = resolve_path(document, self.path)
        op = FilterOperator(self.operator)

        if op == FilterOperator.EXISTS:
            return (actual is not MISSING) == bool(self.value)
        if op == FilterOperator.NE:
            return actual is MISSING or actual != self.value
        if op == FilterOperator.NOT_IN:
            return actual is MISSING or actual not in self.value
        if actual is MISSING:
            return False
        if op == FilterOperator.EQ:
            return actual == self.value
        if op == FilterOperator.IN:
            return actual in self.value
        if op == FilterOperator.CONTAINS:
            if isinstance(actual, (list, tuple, set)):
                return self.value in actual
            if isinstance(actual, str) and isinstance(self.value, str):
                return self.value in actual
            return False

        try:
            if op == FilterOperator.GT:
                return actual > self.value
            if op == FilterOperator.GTE:
                return actual >= self.value
            if op == FilterOperator.LT:
                return actual < self.value
            if op == FilterOperator.LTE:
                return actual <= self.value
        except TypeError:
            # Mixed types never compare, as in document stores
            return False
        raise ValueError(f"Unsupported operator: {self.operator}")

    def to_dict(self) -> dict[str, Any]:
        op = FilterOperator(self.operator)
        if op == FilterOperator.CONTAINS:
            return {self.path: {"$elemMatch": {"$eq": self.value}}}
        value = list(self.value) if op in (FilterOperator.IN, FilterOperator.NOT_IN) else self.value
        return {self.path: {_MONGO_OPERATORS[op]: value}}


@dataclass(frozen=True)
class And(Predicate):
    clauses: tuple[Predicate, ...] = field(default_factory=tuple)

    def matches(self, document: dict[str, Any]) -> bool:
        return all(c.matches(document) for c in self.clauses)

    def to_dict(self) -> dict[str, Any]:
        return {"$and": [c.to_dict() for c in self.clauses]}


@dataclass(frozen=True)
class Or(Predicate):
    clauses: tuple[Predicate, ...] = field(default_factory=tuple)

    def matches(self, document: dict[str, Any]) -> bool:
        return any(c.matches(document) for c in self.clauses)

    def to_dict(self) -> dict[str, Any]:
        return {"$or": [c.to_dict() for c in self.clauses]}


@dataclass(frozen=True)
class Not(Predicate):
    clause: Predicate

    def matches(self, document: dict[str, Any]) -> bool:
        return not self.clause.matches(document)

    def to_dict(self) -> dict[str, Any]:
        return {"$nor": [self.clause.to_dict()]}


@dataclass(frozen=True)
class MatchAll(Predicate):
    """Always true; the neutral element of And."""

    def matches(self, document: dict[str, Any]) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {}


def all_of(*clauses: Predicate) -> Predicate:
    """Conjunction, flattening nested Ands and dropping MatchAll."""
    flat: list[Predicate] = []
    for c in clauses:
        if isinstance(c, MatchAll):
            continue
        if isinstance(c, And):
            flat.extend(c.clauses)
        else:
            flat.append(c)
    if not flat:
        return MatchAll()
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def any_of(*clauses: Predicate) -> Predicate:
    """Disjunction, flattening nested Ors."""
    flat: list[Predicate] = []
    for c in clauses:
        if isinstance(c, MatchAll):
            return MatchAll()
        if isinstance(c, Or):
            flat.extend(c.clauses)
        else:
            flat.append(c)
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def negate(clause: Predicate) -> Predicate:
    if isinstance(clause, Not):
        return clause.clause
    return Not(clause)


def version_in_range(start: int, end: int | None = None) -> Predicate:
    """Documents whose migrationVersion is in ``[start, end)``.

    A missing migrationVersion counts as 0, so ranges starting at 0 also
    accept documents without the field (or with a null one).
    """
    if end is not None and end <= max(start, 0):
        return Not(MatchAll())
    upper = (
        Condition(MIGRATION_VERSION_FIELD, FilterOperator.LT, end)
        if end is not None
        else MatchAll()
    )
    if start <= 0:
        if end is None:
            return MatchAll()
        return any_of(
            Condition(MIGRATION_VERSION_FIELD, FilterOperator.EXISTS, False),
            Condition(MIGRATION_VERSION_FIELD, FilterOperator.EQ, None),
            upper,
        )
    return all_of(Condition(MIGRATION_VERSION_FIELD, FilterOperator.GTE, start), upper)


def stale_predicate(target_version: int) -> Predicate:
    """Documents stored below ``target_version`` (or never stamped)."""
    return version_in_range(0, target_version)
