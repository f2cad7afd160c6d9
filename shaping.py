"""
Document shaping

Turns raw client input into the ``data`` map persisted for a schema: only
declared fields survive, values are type-checked, relation values become
ObjectIds and defaults fill absent fields on create.
"""
import copy
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from bson import ObjectId
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from database import as_utc
from errors import ValidationError
from schemas import FieldType, Schema, SchemaField

ExistsFn = Callable[[SchemaField, ObjectId], bool]

_datetime = TypeAdapter(datetime)

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1

_PYTHON_TYPES = {
    FieldType.STRING: (str,),
    FieldType.BOOLEAN: (bool,),
    FieldType.OBJECT: (dict,),
    FieldType.ARRAY: (list,),
}


def coerce(field: SchemaField, value: Any) -> Any:
    """Validates one value against its field; returns the value to store."""
    if value is None:
        if field.required:
            raise ValidationError(f"Required field missing: {field.name}")
        return None

    if field.type == FieldType.RELATION:
        if isinstance(value, ObjectId):
            return value
        if not isinstance(value, str):
            raise ValidationError(f"Relation field must be a valid ObjectID: {field.name}")
        if not ObjectId.is_valid(value):
            raise ValidationError(f"Invalid relation ID for field: {field.name}")
        return ObjectId(value)

    if field.type == FieldType.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Field '{field.name}' must be of type number")
        # BSON stores at most a signed 64-bit int; JSON responses reject NaN and Infinity
        if isinstance(value, int) and not _INT64_MIN <= value <= _INT64_MAX:
            raise ValidationError(f"Field '{field.name}' must be of type number")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"Field '{field.name}' must be of type number")
        return value

    if field.type == FieldType.DATE:
        if isinstance(value, datetime):
            return as_utc(value)
        if not isinstance(value, str):
            raise ValidationError(f"Field '{field.name}' must be an ISO-8601 date")
        try:
            return as_utc(_datetime.validate_python(value))
        except PydanticValidationError:
            raise ValidationError(f"Field '{field.name}' must be an ISO-8601 date")

    if not isinstance(value, _PYTHON_TYPES[field.type]):
        raise ValidationError(f"Field '{field.name}' must be of type {field.type.value}")
    return value


def shape(schema: Schema, raw: Dict[str, Any], exists: Optional[ExistsFn] = None,
          partial: bool = False) -> Dict[str, Any]:
    """
    Builds the stored data map in schema field order.

    With ``partial`` only the keys present in ``raw`` are shaped (update);
    required and default handling is skipped. Every relation value is then
    checked with ``exists`` before anything is returned, so a dangling
    reference rejects the whole write.
    """
    doc: Dict[str, Any] = {}
    for field in schema.fields:
        if field.name in raw:
            doc[field.name] = coerce(field, raw[field.name])
        elif partial:
            continue
        elif field.default is not None:
            doc[field.name] = coerce(field, copy.deepcopy(field.default))
        elif field.required:
            raise ValidationError(f"Required field missing: {field.name}")

    if exists is not None:
        for field in schema.fields:
            ref = doc.get(field.name)
            if field.is_relation and isinstance(ref, ObjectId) and not exists(field, ref):
                raise ValidationError(f"Referenced document not found for field: {field.name}")
    return doc


def update_set(data: Dict[str, Any]) -> Dict[str, Any]:
    """``$set`` map that merges fields into the stored ``data`` map."""
    return {f"data.{name}": value for name, value in data.items()}
