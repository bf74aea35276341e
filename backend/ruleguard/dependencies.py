import json

from fastapi import Request

from .database import SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def read_json_body(request: Request):
    """Request body as JSON, {} when empty, None when it cannot be decoded."""
    body = await request.body()
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except ValueError:
        return None
