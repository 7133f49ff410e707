"""
Records module data models.
"""

from typing import Any, Iterator, Optional
from pydantic import BaseModel, Field

from modules.session.models import MIN_AGE, Specialty
from providers.base import FieldFilter, FilterOp, OrderBy
from shared.fields import AliasTable


class CollectionRecord(BaseModel):
    """One record of a live collection, keyed by canonical field names."""

    id: str
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def get(self, field: str, default: Any = None) -> Any:
        return self.data.get(field, default)

    def __getitem__(self, field: str) -> Any:
        return self.data[field]

    def __contains__(self, field: object) -> bool:
        return field in self.data

    def keys(self) -> Iterator[str]:
        return iter(self.data)


class QueryDescriptor(BaseModel):
    """
    A query against one collection.

    Filters and ordering are sent to the store as written. Ordering is also
    re-applied locally after alias resolution, so records stored under
    legacy field names still land in the declared order.
    """

    collection: str = Field(..., min_length=1)
    filters: list[FieldFilter] = Field(default_factory=list)
    order_by: list[OrderBy] = Field(default_factory=list)
    limit: Optional[int] = Field(None, gt=0)
    aliases: Optional[AliasTable] = Field(
        None, description="Alias table for this query; None uses the sync's default"
    )

    model_config = {"frozen": True}

    def where(self, field: str, op: FilterOp, value: Any) -> "QueryDescriptor":
        """Copy of this query with one more filter."""
        return self.model_copy(
            update={"filters": [*self.filters, FieldFilter(field=field, op=op, value=value)]}
        )

    def ordered_by(self, field: str, descending: bool = False) -> "QueryDescriptor":
        """Copy of this query with one more ordering clause."""
        return self.model_copy(
            update={"order_by": [*self.order_by, OrderBy(field=field, descending=descending)]}
        )


class MemberInput(BaseModel):
    """A new member record."""

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    age: int = Field(..., ge=MIN_AGE)
    specialty: Specialty


class MemberUpdate(BaseModel):
    """Partial member change. Unset fields are left untouched."""

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=3)
    age: Optional[int] = Field(None, ge=MIN_AGE)
    specialty: Optional[Specialty] = None
