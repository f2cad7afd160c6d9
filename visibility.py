"""
Client-facing views of stored documents

Private fields never leave the server, populated relations included.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from bson import ObjectId

from database import as_utc
from relations import RelationTarget, StorageShape, population_alias
from schemas import Schema

_RECORD_META = ("_id", "created_at", "updated_at")


def jsonable(value: Any) -> Any:
    """ObjectIds to hex strings, naive datetimes to UTC, recursively."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def is_password_like(name: str) -> bool:
    return "password" in name.lower()


def _meta(row: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": row.get("_id"), "created_at": row.get("created_at"), "updated_at": row.get("updated_at")}


def flat_record_view(record: Dict[str, Any], schema: Optional[Schema]) -> Dict[str, Any]:
    """Public view of an auth user record (stored without a ``data`` wrapper)."""
    private = set()
    if schema is not None:
        private = {f.name for f in schema.fields if not f.is_public}
        if schema.auth_config and schema.auth_config.password_field:
            private.add(schema.auth_config.password_field)

    view = {"id": record.get("_id")}
    for key, value in record.items():
        if key in _RECORD_META or key in private or is_password_like(key):
            continue
        view[key] = value
    view["created_at"] = record.get("created_at")
    view["updated_at"] = record.get("updated_at")
    return view


def _related_view(doc: Dict[str, Any], target: RelationTarget) -> Dict[str, Any]:
    if target.shape == StorageShape.FLAT:
        return flat_record_view(doc, target.schema)
    if target.schema is not None:
        return project(doc, target.schema)
    # Target schema was deleted after the reference was written
    return {"id": doc.get("_id"), "created_at": doc.get("created_at"), "updated_at": doc.get("updated_at")}


def project(row: Dict[str, Any], schema: Schema, targets: Iterable[RelationTarget] = ()) -> Dict[str, Any]:
    """
    Projects a stored (optionally populated) document to its public view.

    Relation fields prefer the populated value from the ``populated_<field>``
    sibling and fall back to the raw reference id.
    """
    data = row.get("data") or {}
    by_field = {t.field.name: t for t in targets}

    view = _meta(row)
    for field in schema.fields:
        if not field.is_public:
            continue
        if field.is_relation:
            populated = row.get(population_alias(field.name))
            target = by_field.get(field.name)
            if populated and target is not None:
                view[field.name] = _related_view(populated, target)
                continue
        if field.name in data:
            view[field.name] = data[field.name]
    return jsonable(view)


def public_fields(schema: Schema, data: Dict[str, Any]) -> Dict[str, Any]:
    """Public subset of a freshly shaped data map."""
    return jsonable({f.name: data[f.name] for f in schema.fields if f.is_public and f.name in data})
