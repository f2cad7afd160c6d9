"""
Relation resolution

A relation field stores the target document's ObjectId. Where the target
lives depends on the target schema: plain collections hold wrapped
``{user_id, data, ...}`` documents, auth-enabled schemas keep flat user
records in their ``user_collection``. The shape is decided once from the
target schema, never by looking at the stored documents.

Population is one-to-one: each relation is a $lookup followed by an $unwind
that keeps documents whose reference is missing.
"""
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from bson import ObjectId
from pymongo.database import Database

from registry import get_active_schema
from schemas import Schema, SchemaField


class StorageShape(str, Enum):
    WRAPPED = "wrapped"
    FLAT = "flat"


class RelationTarget(NamedTuple):
    field: SchemaField
    collection: str
    shape: StorageShape
    schema: Optional[Schema]


def population_alias(field_name: str) -> str:
    return f"populated_{field_name}"


def resolve_target(platform_db: Database, owner_id: ObjectId, field: SchemaField) -> RelationTarget:
    target = get_active_schema(platform_db, owner_id, field.target)
    if target is not None and target.auth_enabled:
        return RelationTarget(field, target.user_collection, StorageShape.FLAT, target)
    return RelationTarget(field, field.target, StorageShape.WRAPPED, target)


def plan_relations(platform_db: Database, owner_id: ObjectId, schema: Schema) -> List[RelationTarget]:
    return [resolve_target(platform_db, owner_id, f) for f in schema.fields if f.is_relation]


def build_population_pipeline(match: Dict[str, Any], targets: List[RelationTarget],
                              sort: Optional[Dict[str, int]] = None, skip: int = 0,
                              limit: Optional[int] = None) -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = [{"$match": match}]
    if sort:
        pipeline.append({"$sort": sort})
    if skip:
        pipeline.append({"$skip": skip})
    if limit:
        pipeline.append({"$limit": limit})

    for target in targets:
        alias = population_alias(target.field.name)
        pipeline.append({"$lookup": {
            "from": target.collection,
            "localField": f"data.{target.field.name}",
            "foreignField": "_id",
            "as": alias,
        }})
        pipeline.append({"$unwind": {"path": f"${alias}", "preserveNullAndEmptyArrays": True}})
    return pipeline


def resolve_existence(tenant_db: Database, owner_id: ObjectId, target: RelationTarget, ref_id: ObjectId) -> bool:
    # Auth user records carry no owner id
    if target.shape == StorageShape.FLAT:
        query = {"_id": ref_id}
    else:
        query = {"_id": ref_id, "user_id": owner_id}
    return tenant_db[target.collection].find_one(query, {"_id": 1}) is not None


def existence_checker(tenant_db: Database, owner_id: ObjectId, targets: List[RelationTarget]):
    """Adapts ``resolve_existence`` to the shaper's ``exists(field, ref)`` callback."""
    by_field = {t.field.name: t for t in targets}

    def exists(field: SchemaField, ref_id: ObjectId) -> bool:
        return resolve_existence(tenant_db, owner_id, by_field[field.name], ref_id)

    return exists
