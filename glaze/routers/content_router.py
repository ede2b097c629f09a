from collections.abc import Iterable, Mapping
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import Column, Table, select
from sqlalchemy.orm import Session

from glaze.db.session import DatabaseHandle


def _coerce_key(column: Column, raw: str) -> Any:
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return raw
    try:
        return python_type(raw)
    except (TypeError, ValueError):
        raise HTTPException(status_code=404, detail="Item not found") from None


def _add_table_routes(router: APIRouter, name: str, table: Table, db: DatabaseHandle) -> None:
    order_by = list(table.primary_key.columns) or list(table.columns)[:1]

    def list_items(
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        session: Session = Depends(db.get_db),
    ) -> dict:
        rows = session.execute(
            select(table).order_by(*order_by).offset(offset).limit(limit)
        ).mappings().all()
        return {
            "count": len(rows),
            "limit": limit,
            "offset": offset,
            "items": [dict(row) for row in rows],
        }

    router.add_api_route(f"/{name}", list_items, methods=["GET"], name=f"list_{name}")

    key_columns = list(table.primary_key.columns)
    if len(key_columns) != 1:
        return
    key = key_columns[0]

    def get_item(item_id: str, session: Session = Depends(db.get_db)) -> dict:
        row = session.execute(
            select(table).where(key == _coerce_key(key, item_id))
        ).mappings().first()
        if row is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return dict(row)

    router.add_api_route(f"/{name}/{{item_id}}", get_item, methods=["GET"], name=f"get_{name}")


def build_content_router(
    db: DatabaseHandle,
    tables: Mapping[str, Table],
    exclude: Iterable[str],
    logger: logging.Logger | logging.LoggerAdapter,
) -> APIRouter:
    """Generate read endpoints for every schema table not excluded."""
    router = APIRouter(tags=["content"])
    excluded = set(exclude)
    exposed: list[str] = []

    for name, table in sorted(tables.items()):
        if name in excluded:
            continue
        _add_table_routes(router, name, table, db)
        exposed.append(name)

    logger.info(
        "Content API generated",
        extra={"event": "content_api_generated", "tables": exposed, "excluded": sorted(excluded)},
    )
    return router
