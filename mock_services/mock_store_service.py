"""
mock_store_service.py — Mock Implementation of the Hosted Table Store (REST API)

This module provides a simulated table store for local runs and tests.
It exposes a small FastAPI application speaking the subset of the PostgREST
dialect the storefront uses, backed by in-memory tables.

Supported:
    • GET    /rest/v1/{table}?col=eq.value&col=ilike.pattern&order=col.desc&limit=n
    • POST   /rest/v1/{table}   (list of rows, returns the inserted rows)
    • PATCH  /rest/v1/{table}?col=eq.value
    • DELETE /rest/v1/{table}?col=eq.value
    • POST   /storage/v1/object/{bucket}/{name}         (upload, raw body)
    • GET    /storage/v1/object/public/{bucket}/{name}  (public download)
    • DELETE /storage/v1/object/{bucket}                (body: {"prefixes": [...]})

Simulation Scenarios:
    • Unique constraint on orders.order_number → HTTP 409 with code 23505
    • Missing or wrong `apikey` header → HTTP 401
    • Unknown table or bucket → HTTP 404
    • Uploading an existing object name → HTTP 409

Port:
    Default: 8010 (HTTP)
"""

from datetime import datetime, timezone
import logging
import os
import re
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

app = FastAPI(title="Mock Table Store")
logging.basicConfig(level=logging.INFO)

API_KEY = os.environ.get("STORE_API_KEY", "local-dev-key")
TABLES = ("products", "orders", "admin_users", "admin_config")
UNIQUE_COLUMNS = {"orders": "order_number", "admin_users": "email"}
RESERVED_PARAMS = {"select", "order", "limit"}

tables = {name: [] for name in TABLES}

BUCKETS = ("product-images",)
objects = {name: {} for name in BUCKETS}

SEED_PRODUCTS = [
    {"name": "ماكينة حلاقة احترافية", "price": 150, "category": "ماكينات",
     "description": "ماكينة حلاقة احترافية عالية الجودة",
     "image": "https://images.unsplash.com/photo-1621605815971-fbc98d665033?w=400&h=400&fit=crop"},
    {"name": "مقص حلاقة متخصص", "price": 80, "category": "مقصات",
     "description": "مقص حلاقة احترافي حاد ومريح",
     "image": "https://images.unsplash.com/photo-1634449571010-02389ed0f9b0?w=400&h=400&fit=crop"},
    {"name": "زيت شعر طبيعي", "price": 25, "category": "مستحضرات",
     "description": "زيت شعر طبيعي مغذي ومرطب",
     "image": "https://images.unsplash.com/photo-1556228720-195a672e8a03?w=400&h=400&fit=crop"},
    {"name": "شفرات حلاقة احترافية", "price": 15, "category": "مستهلكات",
     "description": "شفرات حلاقة حادة وآمنة للاستخدام المتكرر",
     "image": "https://images.unsplash.com/photo-1503149779833-1de50ebe5f8a?w=400&h=400&fit=crop"},
]


def _now():
    return datetime.now(timezone.utc).isoformat()


def reset_tables(seed: bool = False):
    """Empties all tables; optionally inserts the demo catalog."""
    for name in TABLES:
        tables[name].clear()
    for name in BUCKETS:
        objects[name].clear()
    if seed:
        for product in SEED_PRODUCTS:
            _insert_row("products", dict(product))


def _insert_row(table: str, row: dict) -> dict:
    unique = UNIQUE_COLUMNS.get(table)
    if unique and any(existing.get(unique) == row.get(unique) for existing in tables[table]):
        raise HTTPException(
            status_code=409,
            detail={"code": "23505", "message": f"duplicate key value violates unique constraint on {unique}"},
        )
    row.setdefault("id", str(uuid.uuid4()))
    row.setdefault("created_at", _now())
    if table in ("products", "admin_config"):
        row.setdefault("updated_at", row["created_at"])
    tables[table].append(row)
    return row


def _check_request(request: Request, table: str):
    if request.headers.get("apikey") != API_KEY:
        raise HTTPException(status_code=401, detail={"message": "Invalid API key"})
    if table not in tables:
        raise HTTPException(status_code=404, detail={"message": f"Unknown table {table}"})


def _like_regex(pattern: str):
    """LIKE pattern → regex: `%` and `*` match any run, `_` one character, `\\` escapes."""
    parts = []
    escaped = False
    for ch in pattern:
        if escaped:
            parts.append(re.escape(ch))
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch in "%*":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def _matches(row: dict, request: Request) -> bool:
    for column, condition in request.query_params.items():
        if column in RESERVED_PARAMS:
            continue
        operator, _, value = condition.partition(".")
        if operator == "eq":
            if str(row.get(column)) != value:
                return False
        elif operator == "ilike":
            if not _like_regex(value).fullmatch(str(row.get(column) or "")):
                return False
        else:
            raise HTTPException(status_code=400, detail={"message": f"Unsupported operator {operator}"})
    return True


@app.exception_handler(HTTPException)
async def postgrest_error(request: Request, exc: HTTPException):
    # PostgREST returns the error object at top level, not wrapped in "detail"
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


@app.get("/rest/v1/{table}")
def select_rows(table: str, request: Request):
    _check_request(request, table)
    rows = [row for row in tables[table] if _matches(row, request)]

    order = request.query_params.get("order")
    if order:
        column, _, direction = order.partition(".")
        rows.sort(key=lambda r: str(r.get(column) or ""), reverse=(direction == "desc"))

    limit = request.query_params.get("limit")
    if limit is not None:
        rows = rows[:int(limit)]
    return rows


@app.post("/rest/v1/{table}", status_code=201)
async def insert_rows(table: str, request: Request):
    _check_request(request, table)
    payload = await request.json()
    rows = payload if isinstance(payload, list) else [payload]
    inserted = [_insert_row(table, dict(row)) for row in rows]
    logging.info(f"[STORE] {len(inserted)} Zeile(n) in '{table}' eingefügt.")
    return inserted


@app.patch("/rest/v1/{table}")
async def update_rows(table: str, request: Request):
    _check_request(request, table)
    changes = await request.json()
    updated = []
    for row in tables[table]:
        if _matches(row, request):
            row.update(changes)
            if "updated_at" in row:
                row["updated_at"] = _now()
            updated.append(row)
    logging.info(f"[STORE] {len(updated)} Zeile(n) in '{table}' aktualisiert.")
    return updated


@app.delete("/rest/v1/{table}")
def delete_rows(table: str, request: Request):
    _check_request(request, table)
    deleted = [row for row in tables[table] if _matches(row, request)]
    tables[table][:] = [row for row in tables[table] if row not in deleted]
    logging.info(f"[STORE] {len(deleted)} Zeile(n) aus '{table}' gelöscht.")
    return deleted


# --- Object storage ---
def _check_bucket(request: Request, bucket: str):
    if request.headers.get("apikey") != API_KEY:
        raise HTTPException(status_code=401, detail={"message": "Invalid API key"})
    if bucket not in objects:
        raise HTTPException(status_code=404, detail={"message": f"Bucket not found: {bucket}"})


@app.post("/storage/v1/object/{bucket}/{name:path}")
async def upload_object(bucket: str, name: str, request: Request):
    _check_bucket(request, bucket)
    if name in objects[bucket]:
        raise HTTPException(status_code=409, detail={"error": "Duplicate", "message": "The resource already exists"})
    content_type = request.headers.get("content-type", "application/octet-stream")
    objects[bucket][name] = (await request.body(), content_type)
    logging.info(f"[STORAGE] {bucket}/{name} hochgeladen ({content_type}).")
    return {"Key": f"{bucket}/{name}"}


@app.get("/storage/v1/object/public/{bucket}/{name:path}")
def download_public_object(bucket: str, name: str):
    stored = objects.get(bucket, {}).get(name)
    if stored is None:
        raise HTTPException(status_code=404, detail={"message": "Object not found"})
    content, content_type = stored
    return Response(content=content, media_type=content_type)


@app.delete("/storage/v1/object/{bucket}")
async def delete_objects(bucket: str, request: Request):
    _check_bucket(request, bucket)
    payload = await request.json()
    deleted = [name for name in payload.get("prefixes", []) if objects[bucket].pop(name, None) is not None]
    logging.info(f"[STORAGE] {len(deleted)} Objekt(e) aus {bucket} gelöscht.")
    return [{"name": name} for name in deleted]


if __name__ == "__main__":
    import uvicorn

    reset_tables(seed=True)
    uvicorn.run(app, host="0.0.0.0", port=8010)
