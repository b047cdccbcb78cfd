"""Query compatibility shim.

While the reconciliation job has not yet converged a collection, one
logical field can be stored in several physical shapes. The shim turns a
filter on the logical field into an ``$or`` of per-version clauses, each
pairing the test for one shape with the version range that uses it::

    telephone = FieldHistory("telephone", [
        VersionRange(0, 1, Representation("telephone")),
        VersionRange(1, None, Representation.array("telephones")),
    ])
    shim = QueryCompatibilityShim([telephone])
    shim.compile("telephone", FilterOperator.EQ, "555")
    # (telephone == "555" AND migrationVersion in [0, 1))
    #   OR (telephones contains "555" AND migrationVersion >= 1)

Once no document below a version remains, drop its range from the
declaration (``FieldHistory.retire_below``) and the clause goes away.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Union

from s3evolve.core.exceptions import FieldDeclarationError
from s3evolve.core.query import (
    Condition,
    FilterOperator,
    Predicate,
    all_of,
    any_of,
    negate,
    version_in_range,
)

ClauseBuilder = Callable[[FilterOperator, Any], Predicate]

_ELEMENT_WISE = (
    FilterOperator.EQ,
    FilterOperator.NE,
    FilterOperator.IN,
    FilterOperator.NOT_IN,
)


@dataclass(frozen=True)
class Representation:
    """How a logical field is physically stored in one version range.

    Attributes:
        path: Dotted path of the physical field
        operators: Operator substitutions for the physical field
        value_adapter: Converts the logical value into the physical one
        element_wise: The physical field is a list and the logical value
            is compared with its elements
    """

    path: str
    operators: dict[FilterOperator, FilterOperator] = field(default_factory=dict)
    value_adapter: Callable[[Any], Any] | None = None
    element_wise: bool = False

    @classmethod
    def array(cls, path: str, value_adapter: Callable[[Any], Any] | None = None) -> "Representation":
        """A list field holding what used to be a single value.

        EQ / IN match when the list holds the value (any of the values);
        NE / NOT_IN match when it holds none of them.
        """
        return cls(path=path, value_adapter=value_adapter, element_wise=True)

    def __call__(self, operator: FilterOperator, value: Any) -> Predicate:
        operator = FilterOperator(operator)
        if self.value_adapter is not None:
            if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
                value = [self.value_adapter(v) for v in value]
            elif operator != FilterOperator.EXISTS:
                value = self.value_adapter(value)
        if self.element_wise and operator in _ELEMENT_WISE:
            return self._element_clause(operator, value)
        return Condition(self.path, self.operators.get(operator, operator), value)

    def _element_clause(self, operator: FilterOperator, value: Any) -> Predicate:
        if operator in (FilterOperator.EQ, FilterOperator.NE):
            values = [value]
        else:
            values = list(value)
        held = any_of(
            *(Condition(self.path, FilterOperator.CONTAINS, v) for v in values)
        )
        if operator in (FilterOperator.NE, FilterOperator.NOT_IN):
            return negate(held)
        return held


@dataclass(frozen=True)
class VersionRange:
    """Documents with ``start <= migrationVersion < end`` use ``representation``.

    ``end`` of None means "and every later version".
    """

    start: int
    end: int | None
    representation: Union[Representation, ClauseBuilder]

    def contains(self, version: int) -> bool:
        return version >= self.start and (self.end is None or version < self.end)


@dataclass(frozen=True)
class FieldHistory:
    """Per-version physical representations of one logical field."""

    logical_field: str
    ranges: tuple[VersionRange, ...]

    def __post_init__(self):
        object.__setattr__(self, "ranges", tuple(self.ranges))
        self._validate()

    def _validate(self) -> None:
        name = self.logical_field
        if not self.ranges:
            raise FieldDeclarationError(
                f"Field '{name}' declares no version ranges", field=name
            )

        previous: VersionRange | None = None
        for r in self.ranges:
            if r.start < 0:
                raise FieldDeclarationError(
                    f"Field '{name}' has a range starting below 0", field=name
                )
            if r.end is not None and r.end <= r.start:
                raise FieldDeclarationError(
                    f"Field '{name}' has an empty range [{r.start}, {r.end})",
                    field=name,
                )
            if previous is not None:
                if previous.end is None:
                    raise FieldDeclarationError(
                        f"Field '{name}': only the last range may be open-ended",
                        field=name,
                    )
                if r.start != previous.end:
                    raise FieldDeclarationError(
                        f"Field '{name}': ranges must be contiguous and ascending, "
                        f"got [{previous.start}, {previous.end}) then "
                        f"[{r.start}, {r.end})",
                        field=name,
                    )
            previous = r

    @property
    def floor(self) -> int:
        """Lowest version still covered by the declaration."""
        return self.ranges[0].start

    def representation_for(self, version: int) -> Union[Representation, ClauseBuilder, None]:
        for r in self.ranges:
            if r.contains(version):
                return r.representation
        return None

    def retire_below(self, cutoff: int) -> "FieldHistory":
        """Return a declaration without the versions below ``cutoff``.

        Call this only once the reconciliation job has guaranteed that no
        document below ``cutoff`` remains in the collection.
        """
        kept = []
        for r in self.ranges:
            if r.end is not None and r.end <= cutoff:
                continue
            kept.append(VersionRange(max(r.start, cutoff), r.end, r.representation))
        if not kept:
            raise FieldDeclarationError(
                f"Retiring versions below {cutoff} would leave field "
                f"'{self.logical_field}' without a representation",
                field=self.logical_field,
            )
        return FieldHistory(self.logical_field, kept)


class QueryCompatibilityShim:
    """Compiles logical field filters into version-aware physical predicates."""

    def __init__(self, histories: Iterable[FieldHistory] = ()):
        self._histories: dict[str, FieldHistory] = {}
        for history in histories:
            if history.logical_field in self._histories:
                raise FieldDeclarationError(
                    f"Field '{history.logical_field}' is declared twice",
                    field=history.logical_field,
                )
            self._histories[history.logical_field] = history

    @property
    def fields(self) -> list[str]:
        return list(self._histories)

    def history(self, logical_field: str) -> FieldHistory | None:
        return self._histories.get(logical_field)

    def compile(
        self,
        logical_field: str,
        operator: FilterOperator | str,
        value: Any = None,
    ) -> Predicate:
        """Build the physical predicate for ``logical_field <operator> value``.

        Fields without a declared history are assumed to have a single
        shape and compile to a plain Condition on the same path.
        """
        operator = FilterOperator(operator)
        history = self._histories.get(logical_field)
        if history is None:
            return Condition(logical_field, operator, value)

        ranges = history.ranges
        # Nothing below the floor exists, so a lone open range needs no version test
        if len(ranges) == 1 and ranges[0].end is None:
            return ranges[0].representation(operator, value)

        return any_of(
            *(
                all_of(
                    r.representation(operator, value),
                    version_in_range(r.start, r.end),
                )
                for r in ranges
            )
        )

    def compile_all(self, filters: dict[str, Any]) -> Predicate:
        """Compile ``{field: value}`` equality filters into one conjunction.

        A value may also be a ``(operator, value)`` pair.
        """
        clauses = []
        for logical_field, condition in filters.items():
            if isinstance(condition, tuple) and len(condition) == 2:
                operator, value = condition
            else:
                operator, value = FilterOperator.EQ, condition
            clauses.append(self.compile(logical_field, operator, value))
        return all_of(*clauses)
