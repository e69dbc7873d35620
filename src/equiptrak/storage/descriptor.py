"""Backend-agnostic shape of a read request."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from equiptrak.core.enums import SortDirection
from equiptrak.core.errors import ValidationError


@dataclass(frozen=True)
class QueryDescriptor:
    """
    What to read, independent of the driver that reads it.

    Filters are equality-only: ``{"company_id": "abc"}`` means
    ``company_id = 'abc'``, and a ``None`` value means ``IS NULL``. There are
    no ranges and no OR; callers that need them do not belong on this path.

    ``order`` keeps insertion order, so ``{"service_date": "desc", "id": "asc"}``
    sorts by date first.

    Examples:
        >>> QueryDescriptor(table="companies", filters={"id": "abc"}, single=True)
        QueryDescriptor(table='companies', ...)
    """

    table: str
    select: tuple[str, ...] = ("*",)
    filters: Mapping[str, Any] = field(default_factory=dict)
    order: Mapping[str, SortDirection] = field(default_factory=dict)
    limit: int | None = None
    offset: int | None = None
    single: bool = False

    def __post_init__(self) -> None:
        if not self.table:
            raise ValidationError("Query needs a table", field="table")
        select = (self.select,) if isinstance(self.select, str) else tuple(self.select)
        object.__setattr__(self, "select", select or ("*",))
        object.__setattr__(self, "filters", dict(self.filters))

        order: dict[str, SortDirection] = {}
        for column, direction in dict(self.order).items():
            try:
                order[column] = SortDirection(str(getattr(direction, "value", direction)).lower())
            except ValueError:
                raise ValidationError(
                    f"Invalid sort direction for '{column}': {direction!r}",
                    field=column,
                    value=direction,
                    constraint="asc|desc",
                ) from None
        object.__setattr__(self, "order", order)

        for name in ("limit", "offset"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(
                    f"{name} must be a non-negative integer",
                    field=name,
                    value=value,
                )

    @property
    def selects_all(self) -> bool:
        return self.select == ("*",)

    @property
    def paginated(self) -> bool:
        return self.limit is not None or bool(self.offset)

    def with_table(self, table: str) -> QueryDescriptor:
        return replace(self, table=table)

    def normalized(self) -> QueryDescriptor:
        """
        The descriptor a driver actually executes.

        ``single`` reads at most one row, and any paginated read gets a
        final ``id asc`` so that both drivers split pages at the same rows.
        """
        changes: dict[str, Any] = {}
        if self.single and self.limit is None:
            changes["limit"] = 1
        if (self.paginated or self.single) and "id" not in self.order:
            changes["order"] = {**self.order, "id": SortDirection.ASC}
        return replace(self, **changes) if changes else self


__all__ = [
    "QueryDescriptor",
]
