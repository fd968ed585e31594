import logging

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.orm import Session

from dropship_engine.api.endpoints import admin
from dropship_engine.db import get_session

logger = logging.getLogger(__name__)

app = FastAPI(title="Dropship Engine")

app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health")
def health(session: Session = Depends(get_session)) -> dict:
    db_ok = False
    try:
        session.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
    return {"status": "healthy" if db_ok else "unhealthy", "database": "ok" if db_ok else "error"}
