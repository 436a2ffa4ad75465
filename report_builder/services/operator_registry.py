"""
Filter Operator Registry

Static table of the filter operators a template may use, which field types
each operator applies to, and the value shape each operator expects.

Value shapes:
- scalar operators take one value matching the field type
- ``between`` takes an ordered ``[min, max]`` pair
- ``in`` / ``not_in`` take a non-empty list (duplicates allowed, order kept)
- ``is_null`` / ``is_not_null`` take no value; any stored value is ignored
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional, Union

from report_builder.schemas.catalog import NUMERIC_FIELD_TYPES, FieldType


@dataclass(frozen=True)
class OperatorSpec:
    """Registry entry for one filter operator."""
    name: str
    label: str
    description: str
    supported_types: FrozenSet[FieldType]
    requires_value: bool = True
    allows_multiple_values: bool = False

    @property
    def is_range(self) -> bool:
        return self.name == "between"

    def empty_value(self) -> Any:
        """Value a filter is reset to when it switches to this operator."""
        if not self.requires_value:
            return None
        if self.allows_multiple_values:
            return []
        return ""


_ALL_TYPES = frozenset(FieldType)
_ORDERED_TYPES = NUMERIC_FIELD_TYPES | {FieldType.DATE}
_LIST_TYPES = NUMERIC_FIELD_TYPES | {FieldType.STRING}
_TEXT_TYPES = frozenset({FieldType.STRING})

# Registry order matters: the first operator supporting a type is its default
_OPERATORS: List[OperatorSpec] = [
    OperatorSpec("equals", "Equals", "Value is exactly equal", _ALL_TYPES),
    OperatorSpec("not_equals", "Not equal", "Value is different", _ALL_TYPES),
    OperatorSpec("greater_than", "Greater than", "Value is greater than", _ORDERED_TYPES),
    OperatorSpec("less_than", "Less than", "Value is less than", _ORDERED_TYPES),
    OperatorSpec("greater_than_or_equal", "Greater or equal", "Value is greater than or equal", _ORDERED_TYPES),
    OperatorSpec("less_than_or_equal", "Less or equal", "Value is less than or equal", _ORDERED_TYPES),
    OperatorSpec("contains", "Contains", "Text contains value", _TEXT_TYPES),
    OperatorSpec("not_contains", "Does not contain", "Text does not contain value", _TEXT_TYPES),
    OperatorSpec("starts_with", "Starts with", "Text starts with value", _TEXT_TYPES),
    OperatorSpec("ends_with", "Ends with", "Text ends with value", _TEXT_TYPES),
    OperatorSpec("in", "In list", "Value is in the list", _LIST_TYPES, allows_multiple_values=True),
    OperatorSpec("not_in", "Not in list", "Value is not in the list", _LIST_TYPES, allows_multiple_values=True),
    OperatorSpec("is_null", "Is empty", "Field is empty", _ALL_TYPES, requires_value=False),
    OperatorSpec("is_not_null", "Is not empty", "Field is not empty", _ALL_TYPES, requires_value=False),
    OperatorSpec("between", "Between", "Value lies between two values", _ORDERED_TYPES, allows_multiple_values=True),
]


class OperatorRegistry:
    """
    Lookup over the operator table.

    Usage:
        registry = OperatorRegistry()
        registry.default_operator(FieldType.NUMBER)   # "equals"
        registry.is_supported("contains", FieldType.NUMBER)   # False
    """

    def __init__(self, operators: Optional[List[OperatorSpec]] = None):
        self._operators: Dict[str, OperatorSpec] = {
            spec.name: spec for spec in (operators or _OPERATORS)
        }

    def __contains__(self, operator: str) -> bool:
        return operator in self._operators

    def __getitem__(self, operator: str) -> OperatorSpec:
        return self._operators[operator]

    def get(self, operator: str) -> Optional[OperatorSpec]:
        return self._operators.get(operator)

    def names(self) -> List[str]:
        return list(self._operators)

    def operators_for(self, field_type: Union[FieldType, str]) -> List[OperatorSpec]:
        """Operators valid for ``field_type``, in registry order."""
        field_type = FieldType(field_type)
        return [spec for spec in self._operators.values() if field_type in spec.supported_types]

    def default_operator(self, field_type: Union[FieldType, str]) -> str:
        """First registered operator supporting ``field_type``."""
        operators = self.operators_for(field_type)
        if not operators:
            raise KeyError(f"No operator supports field type {field_type}")
        return operators[0].name

    def is_supported(self, operator: str, field_type: Union[FieldType, str]) -> bool:
        spec = self._operators.get(operator)
        return spec is not None and FieldType(field_type) in spec.supported_types

    def empty_value(self, operator: str) -> Any:
        spec = self._operators.get(operator)
        return spec.empty_value() if spec else ""

    def has_valid_value(self, operator: str, value: Any, field_type: Union[FieldType, str]) -> bool:
        """
        Check ``value`` against the shape ``operator`` requires.

        Operators that take no value always pass. Unknown operators fail.
        """
        spec = self._operators.get(operator)
        if spec is None:
            return False
        if not spec.requires_value:
            return True

        field_type = FieldType(field_type)
        if spec.is_range:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                return False
            return all(is_valid_scalar(item, field_type) for item in value)

        if spec.allows_multiple_values:
            if not isinstance(value, (list, tuple)) or not value:
                return False
            return all(is_valid_scalar(item, field_type) for item in value)

        return is_valid_scalar(value, field_type)


def is_valid_scalar(value: Any, field_type: FieldType) -> bool:
    """Non-empty scalar matching ``field_type``."""
    if value is None or isinstance(value, (list, tuple, dict, set)):
        return False
    if isinstance(value, str) and not value.strip():
        return False

    if field_type in NUMERIC_FIELD_TYPES:
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return True
        if isinstance(value, float):
            return math.isfinite(value)
        try:
            number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except InvalidOperation:
            return False
        return number.is_finite()

    if field_type == FieldType.DATE:
        if isinstance(value, (date, datetime)):
            return True
        if not isinstance(value, str):
            return False
        text = value.strip()
        try:
            if len(text) == 10:
                date.fromisoformat(text)
            else:
                datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return False
        return True

    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return True
        return isinstance(value, str) and value.strip().lower() in {"true", "false"}

    return isinstance(value, str)


# Shared default instance
operator_registry = OperatorRegistry()
