from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo

from .errors import ValidationError

MaxAttributeNameLength = 255
MaxPatternNameLength = 255

_NAME_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
_PATTERN_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_.:-]*$")


def _contains_control_characters(value: str) -> bool:
    for ch in value:
        code = ord(ch)
        if 0 <= code <= 0x1F or code == 0x7F:
            return True
    return False


def validate_attribute_name(name: str) -> None:
    if not isinstance(name, str) or not name:
        raise ValidationError("attribute name cannot be empty")
    if len(name) > MaxAttributeNameLength:
        raise ValidationError("attribute name exceeds maximum length")
    if _contains_control_characters(name):
        raise ValidationError("attribute name contains control characters")


def validate_table_name(name: str) -> None:
    if not isinstance(name, str) or len(name) < 3 or len(name) > 255:
        raise ValidationError("table name length invalid")
    if _NAME_RE.match(name) is None:
        raise ValidationError("table name contains invalid characters")


def validate_index_name(name: str) -> None:
    if not isinstance(name, str) or len(name) < 3 or len(name) > 255:
        raise ValidationError(f"index name length invalid: {name!r}")
    if _NAME_RE.match(name) is None:
        raise ValidationError(f"index name contains invalid characters: {name!r}")


def validate_pattern_name(name: str) -> None:
    if not isinstance(name, str) or not name:
        raise ValidationError("access pattern name cannot be empty")
    if len(name) > MaxPatternNameLength:
        raise ValidationError("access pattern name exceeds maximum length")
    if _PATTERN_NAME_RE.match(name) is None:
        raise ValidationError(f"access pattern name contains invalid characters: {name!r}")


def _describe(err: PydanticValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in e['loc']) or '<item>'}: {e['msg']}" for e in err.errors())


def validate_item(schema: type[BaseModel], item: Mapping[str, Any]) -> None:
    """Checks a full item against `schema`; the item itself is stored as given."""
    try:
        schema.model_validate(dict(item))
    except PydanticValidationError as err:
        raise ValidationError(f"item does not match {schema.__name__}: {_describe(err)}") from err


def _schema_fields(schema: type[BaseModel]) -> dict[str, FieldInfo]:
    out: dict[str, FieldInfo] = {}
    for name, info in schema.model_fields.items():
        out[info.alias or name] = info
    return out


def validate_partial_item(schema: type[BaseModel], updates: Mapping[str, Any]) -> None:
    """Checks only the attributes an update touches.

    None means the attribute is removed, which a required field does not allow.
    Nested paths are accepted when their top-level attribute is a known field.
    """
    fields = _schema_fields(schema)
    forbid_extra = schema.model_config.get("extra") == "forbid"

    for path, value in updates.items():
        head = path.split(".", 1)[0].split("[", 1)[0]
        info = fields.get(head)
        if info is None:
            if forbid_extra:
                raise ValidationError(f"{schema.__name__} has no field {head!r}")
            continue
        if head != path:
            continue
        if value is None:
            if info.is_required():
                raise ValidationError(f"cannot remove required field {head!r} of {schema.__name__}")
            continue
        annotation = Annotated[info.annotation, *info.metadata] if info.metadata else info.annotation
        try:
            TypeAdapter(annotation).validate_python(value)
        except PydanticValidationError as err:
            raise ValidationError(f"{head} does not match {schema.__name__}: {_describe(err)}") from err
