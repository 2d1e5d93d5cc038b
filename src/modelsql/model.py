"""
Model metadata consumed by the compiler and the result normalizer.

Only the parts of a model that persistence needs are described here: the
table name, the typed attributes with their column mapping, and the primary
key.
"""
import re
from dataclasses import dataclass
from typing import Any, Self

from modelsql.exceptions import ValidationError

_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')


@dataclass(frozen=True, slots=True)
class Attribute:
    """A named, typed field, optionally stored under another column name."""
    name: str
    type: str | None = None
    column_name: str | None = None
    column_type: str | None = None
    primary: bool = False


def table_name_for(model_name: str) -> str:
    """Derive a table name from a model name: ``TagUser`` -> ``tag_user``.
    """
    return _CAMEL_BOUNDARY.sub('_', model_name).lower()


class Model:
    """Describes a record type and the table it is stored in.

    Usage:
        User = (Model('User')
                .attr('id', primary=True)
                .attr('fullname', column_name='name')
                .attr('active', type='boolean'))
    """

    def __init__(self, name: str, attributes: list[Attribute] | None = None,
                 table_name: str | None = None) -> None:
        self.name = name
        self.table_name = table_name or table_name_for(name)
        self.attributes: dict[str, Attribute] = {}
        self._columns: dict[str, Attribute] = {}
        for attribute in attributes or []:
            self.add_attribute(attribute)

    def __repr__(self) -> str:
        return f'Model({self.name!r}, table_name={self.table_name!r})'

    def attr(self, name: str, **options: Any) -> Self:
        """Add an attribute and return the model for chaining.
        """
        self.add_attribute(Attribute(name, **options))
        return self

    def add_attribute(self, attribute: Attribute) -> None:
        self.attributes[attribute.name] = attribute
        self._columns[attribute.column_name or attribute.name] = attribute

    def get(self, name: str) -> Attribute | None:
        return self.attributes.get(name)

    def by_column(self, column: str) -> Attribute | None:
        """Find the attribute stored in the given physical column."""
        return self._columns.get(column)

    @property
    def primary(self) -> Attribute:
        """The primary key attribute.

        The first attribute flagged ``primary`` wins; a model without one
        falls back to an attribute named ``id``.
        """
        for attribute in self.attributes.values():
            if attribute.primary:
                return attribute
        if 'id' in self.attributes:
            return self.attributes['id']
        raise ValidationError(f'Model {self.name} has no primary key attribute')
