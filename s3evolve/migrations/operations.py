"""Built-in additive migration operations for s3evolve.

Every operation here adds or restructures fields without removing the
fields it reads from.
"""

from dataclasses import dataclass
from typing import Any, Callable

from s3evolve.migrations.base import MigrationOperation


@dataclass(frozen=True)
class AddField(MigrationOperation):
    """Add a new field with a default value.

    Example:
        AddField("is_active", default=True)
    """

    field_name: str
    default: Any = None
    default_factory: Callable[[], Any] | None = None

    def forward(self, data: dict) -> dict:
        if self.field_name not in data:
            if self.default_factory:
                data[self.field_name] = self.default_factory()
            else:
                data[self.field_name] = self.default
        return data


@dataclass(frozen=True)
class CopyField(MigrationOperation):
    """Expose a field under a new name, keeping the old one.

    This is the rolling-deploy safe form of a rename: the previous
    release still finds ``old_name``.

    Example:
        CopyField("mail", "email")
    """

    old_name: str
    new_name: str

    def forward(self, data: dict) -> dict:
        if self.old_name in data and self.new_name not in data:
            data[self.new_name] = data[self.old_name]
        return data


@dataclass(frozen=True)
class TransformField(MigrationOperation):
    """Derive a field value using a custom function.

    Writes to ``target_field`` when given, otherwise rewrites the field
    in place.

    Example:
        TransformField("price", lambda x: int(x * 100), target_field="price_cents")
    """

    field_name: str
    func: Callable[[Any], Any]
    target_field: str | None = None

    def forward(self, data: dict) -> dict:
        if self.field_name in data:
            data[self.target_field or self.field_name] = self.func(data[self.field_name])
        return data


@dataclass(frozen=True)
class WrapInList(MigrationOperation):
    """Turn a scalar field into a single-element list field.

    Example:
        WrapInList("telephone", "telephones")
    """

    source_field: str
    target_field: str

    def forward(self, data: dict) -> dict:
        if self.target_field in data:
            return data
        value = data.get(self.source_field)
        data[self.target_field] = [] if value is None else [value]
        return data


@dataclass(frozen=True)
class SplitField(MigrationOperation):
    """Split a single field into multiple fields.

    Example:
        SplitField(
            "full_name",
            target_fields=["first_name", "last_name"],
            splitter=lambda x: x.split(" ", 1),
        )
    """

    source_field: str
    target_fields: list[str]
    splitter: Callable[[Any], list[Any]]

    def forward(self, data: dict) -> dict:
        if self.source_field in data:
            values = self.splitter(data[self.source_field])
            for i, field_name in enumerate(self.target_fields):
                if i < len(values):
                    data[field_name] = values[i]
        return data


@dataclass(frozen=True)
class MergeFields(MigrationOperation):
    """Merge multiple fields into a single field.

    Example:
        MergeFields(
            ["first_name", "last_name"],
            target_field="full_name",
            merger=lambda x: " ".join(v for v in x if v),
        )
    """

    source_fields: list[str]
    target_field: str
    merger: Callable[[list[Any]], Any]

    def forward(self, data: dict) -> dict:
        values = [data.get(f) for f in self.source_fields]
        data[self.target_field] = self.merger(values)
        return data


@dataclass(frozen=True)
class ConditionalTransform(MigrationOperation):
    """Apply an operation only if a condition is met.

    Example:
        ConditionalTransform(
            condition=lambda x: x.get("type") == "premium",
            operation=AddField("premium_features", default=[]),
        )
    """

    condition: Callable[[dict], bool]
    operation: MigrationOperation

    def forward(self, data: dict) -> dict:
        if self.condition(data):
            return self.operation.forward(data)
        return data
