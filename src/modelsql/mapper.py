"""Resolve attributes to physical columns and result keys back to attributes."""
from modelsql.model import Attribute, Model


def column_name_for(attribute: Attribute) -> str:
    """Physical column for an attribute: the explicit override or its name.
    """
    return attribute.column_name or attribute.name


def resolve_key(model: Model, raw_key: str) -> tuple[Attribute | None, bool]:
    """Resolve a result key and report whether it matched without a prefix.

    Returns
        (attribute, bare) where attribute is None for unmapped keys
    """
    attribute = model.by_column(raw_key)
    if attribute is not None:
        return attribute, True
    prefix = f'{model.table_name}_'
    if raw_key.startswith(prefix):
        return model.by_column(raw_key[len(prefix):]), False
    return None, False


def attribute_key_for(model: Model, raw_key: str) -> str | None:
    """Attribute name for a raw result key, or None if the key is unmapped.

    Keys may be bare column names (``name``) or prefixed with the table name
    (``user_name``) depending on the shape of the query that produced them.
    A bare match is tried first so that a column literally named
    ``user_id`` on table ``user`` is not mistaken for a prefixed ``id``.
    """
    attribute, _ = resolve_key(model, raw_key)
    return attribute.name if attribute is not None else None
