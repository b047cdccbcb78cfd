"""Base classes for s3evolve migrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

Transform = Callable[[dict], dict]


@dataclass(frozen=True)
class MigrationOperation(ABC):
    """Base class for migration operations.

    An operation is one additive change to a document's shape. Operations
    never delete fields: older application instances still running during
    a rolling deploy keep reading the fields they know.
    """

    @abstractmethod
    def forward(self, data: dict) -> dict:
        """Apply the transformation.

        Args:
            data: The document to transform

        Returns:
            Transformed document
        """
        pass


@dataclass(frozen=True)
class MigrationStep:
    """A single, ordered transformation of a document's shape.

    A step upgrades a document *to* ``version``. It is written either as a
    plain ``transform`` function or as a list of operations applied in
    order.

    Attributes:
        version: Positive version this step upgrades documents to
        transform: Function taking and returning a raw document
        description: Human-readable description of the step
        operations: Operations applied in order when no transform is given;
            any iterable is stored as a tuple
    """

    version: int
    transform: Transform | None = None
    description: str = ""
    operations: tuple[MigrationOperation, ...] = field(default=(), hash=False)

    def __post_init__(self):
        object.__setattr__(self, "operations", tuple(self.operations))

    def apply(self, data: dict) -> dict:
        """Apply the step to a document.

        The document passed in is a working copy owned by the caller, so
        the transform is free to mutate it.
        """
        if self.transform is not None:
            return self.transform(data)

        result = data
        for op in self.operations:
            result = op.forward(result)
        return result

    def __repr__(self) -> str:
        name = self.description or getattr(self.transform, "__name__", "operations")
        return f"MigrationStep(version={self.version!r}, {name!r})"


def step(version: int, description: str = "") -> Callable[[Transform], MigrationStep]:
    """Decorator turning a transform function into a MigrationStep.

    Example:
        @step(2, "split full name")
        def split_name(doc):
            first, _, last = doc.get("name", "").partition(" ")
            doc.setdefault("first_name", first)
            doc.setdefault("last_name", last)
            return doc
    """

    def decorator(func: Transform) -> MigrationStep:
        return MigrationStep(
            version=version,
            transform=func,
            description=description or (func.__doc__ or func.__name__).strip(),
        )

    return decorator


def coerce_step(item: Any) -> MigrationStep:
    """Accept a MigrationStep or a ``(version, transform)`` pair."""
    if isinstance(item, MigrationStep):
        return item
    if isinstance(item, tuple) and len(item) == 2 and callable(item[1]):
        version, transform = item
        return MigrationStep(version=version, transform=transform)
    raise TypeError(
        f"Expected a MigrationStep or a (version, transform) pair, got {item!r}"
    )
