from typing import Any, List, Tuple

from .enums import FirestoreOperators, OrderByDirection


class FirestoreField:
    """
    Class-level stand-in for a model field, used to write queries.

    Examples
    --------
    >>> Chapter.order >= 2
    ('order', FirestoreOperators.GTE, 2)
    >>> Book.author_id == "uid_1"
    ('authorId', FirestoreOperators.EQ, 'uid_1')

    The descriptor carries the Firestore name (the alias), so filters and
    orderings always target the stored field even when the python attribute
    is snake_case. On instances the stored value is returned; pydantic keeps
    field values in the instance ``__dict__``, which wins over a non-data
    descriptor anyway.
    """

    def __init__(self, field_name: str, attr_name: str = None):
        self.field_name = field_name
        self.attr_name = attr_name or field_name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.__dict__.get(self.attr_name)

    def __str__(self) -> str:  # noqa: DunderStr
        return str(self.field_name)

    __repr__ = __str__

    def __hash__(self) -> int:  # noqa: DunderHash
        return hash(str(self.field_name))

    # ------------------------------------------------------------------ #
    # Comparison operators build (field, operator, value) tuples         #
    # ------------------------------------------------------------------ #

    def __eq__(self, other):  # type: ignore[override]
        return (str(self), FirestoreOperators.EQ, other)

    def __ne__(self, other):  # type: ignore[override]
        return (str(self), FirestoreOperators.NE, other)

    def __lt__(self, other):
        return (str(self), FirestoreOperators.LT, other)

    def __le__(self, other):
        return (str(self), FirestoreOperators.LTE, other)

    def __gt__(self, other):
        return (str(self), FirestoreOperators.GT, other)

    def __ge__(self, other):
        return (str(self), FirestoreOperators.GTE, other)

    def in_(self, values: List[Any]) -> tuple:
        return (str(self), FirestoreOperators.IN, values)

    def not_in_(self, values: List[Any]) -> tuple:
        return (str(self), FirestoreOperators.NOT_IN, values)

    def array_contains(self, value: Any) -> tuple:
        return (str(self), FirestoreOperators.ARRAY_CONTAINS, value)

    def array_contains_any(self, values: List[Any]) -> tuple:
        return (str(self), FirestoreOperators.ARRAY_CONTAINS_ANY, values)

    # ------------------------------------------------------------------ #
    # Ordering helpers                                                   #
    # ------------------------------------------------------------------ #

    def asc(self) -> Tuple["FirestoreField", OrderByDirection]:
        return (self, OrderByDirection.ASCENDING)

    def desc(self) -> Tuple["FirestoreField", OrderByDirection]:
        return (self, OrderByDirection.DESCENDING)
