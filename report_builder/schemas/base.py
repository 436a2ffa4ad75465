"""
Shared base model for wire-facing schemas.

Attributes are snake_case in Python and camelCase on the wire; both
spellings are accepted on input.
"""
from typing import Any, Dict, List, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

M = TypeVar("M", bound=BaseModel)


class WireModel(BaseModel):
    """Base for every schema that is persisted or exchanged with collaborators."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict using camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_wire(cls: Type[M], data: Dict[str, Any]) -> M:
        return cls.model_validate(data)


def normalize_keys(model_cls: Type[BaseModel], changes: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Map alias keys (``xAxis``) to attribute names (``x_axis``).

    Returns the normalized changes and the keys that match no attribute.
    """
    aliases = {
        info.alias: name
        for name, info in model_cls.model_fields.items()
        if info.alias
    }
    normalized: Dict[str, Any] = {}
    unknown: List[str] = []
    for key, value in changes.items():
        if key in model_cls.model_fields:
            normalized[key] = value
        elif key in aliases:
            normalized[aliases[key]] = value
        else:
            unknown.append(key)
    return normalized, unknown


def merge_model(instance: M, changes: Dict[str, Any]) -> M:
    """Shallow-merge attribute changes into a copy of ``instance`` and revalidate."""
    data = instance.model_dump()
    data.update(changes)
    return type(instance).model_validate(data)
