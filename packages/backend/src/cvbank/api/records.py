"""Records API — owner-scoped CRUD over profile sections.

Learn: Every route takes a mandatory ?user_id= owner filter, checked
against the bearer identity by owner_for_read / owner_for_write before
the store is called with it. Paths:
- /records/{collection}         GET (list), POST (create)
- /records/{collection}/{id}    PUT (replace), DELETE (idempotent)
- /singletons/{kind}            GET (value or null), PUT (upsert)
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from cvbank.api.dependencies import get_store, owner_for_read, owner_for_write
from cvbank.backends.sql import SqlEntityStore
from cvbank.schemas.collections import COLLECTIONS, SINGLETONS, Collection, Singleton

router = APIRouter()


def _parse(schema: type[BaseModel], body: dict[str, Any]) -> BaseModel:
    try:
        return schema.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


# ─── Collections ─────────────────────────────────────────


@router.get("/records/{collection}")
async def list_records(
    collection: Collection,
    owner_id: str = Depends(owner_for_read),
    store: SqlEntityStore = Depends(get_store),
):
    rows = await store.read(owner_id, collection)
    return [row.model_dump(mode="json") for row in rows]


@router.post("/records/{collection}", status_code=201)
async def create_record(
    collection: Collection,
    body: dict[str, Any] = Body(...),
    owner_id: str = Depends(owner_for_write),
    store: SqlEntityStore = Depends(get_store),
):
    data = _parse(COLLECTIONS[collection].create_schema, body)
    entity_id = await store.create(owner_id, collection, data)
    return {"id": entity_id}


@router.put("/records/{collection}/{entity_id}")
async def update_record(
    collection: Collection,
    entity_id: str,
    body: dict[str, Any] = Body(...),
    owner_id: str = Depends(owner_for_write),
    store: SqlEntityStore = Depends(get_store),
):
    data = _parse(COLLECTIONS[collection].create_schema, body)
    if not await store.update(owner_id, collection, entity_id, data):
        raise HTTPException(status_code=404, detail="Record not found")
    return {"updated": True}


@router.delete("/records/{collection}/{entity_id}")
async def delete_record(
    collection: Collection,
    entity_id: str,
    owner_id: str = Depends(owner_for_write),
    store: SqlEntityStore = Depends(get_store),
):
    await store.delete(owner_id, collection, entity_id)
    return {"deleted": True}


# ─── Singletons ──────────────────────────────────────────


@router.get("/singletons/{kind}")
async def get_singleton(
    kind: Singleton,
    owner_id: str = Depends(owner_for_read),
    store: SqlEntityStore = Depends(get_store),
):
    value = await store.get_singleton(owner_id, kind)
    return value.model_dump(mode="json") if value is not None else None


@router.put("/singletons/{kind}")
async def put_singleton(
    kind: Singleton,
    body: dict[str, Any] = Body(...),
    owner_id: str = Depends(owner_for_write),
    store: SqlEntityStore = Depends(get_store),
):
    await store.upsert_singleton(owner_id, kind, _parse(SINGLETONS[kind], body))
    return {"saved": True}
