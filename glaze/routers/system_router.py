from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Response, status
from sqlalchemy.exc import SQLAlchemyError

from glaze.db.session import DatabaseHandle


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_system_router(db: DatabaseHandle, logger: logging.Logger, version: str) -> APIRouter:
    router = APIRouter(tags=["system"])

    @router.get("/health")
    def health() -> dict:
        return {"status": "ok", "version": version, "timestamp": _now()}

    @router.get("/ready")
    def ready(response: Response) -> dict:
        try:
            db.ping()
        except SQLAlchemyError as exc:
            message = str(exc).strip().split("\n")[0]
            logger.warning(
                "Readiness check failed",
                extra={"event": "ready_check_failed", "error": message},
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "error",
                "database": "disconnected",
                "error": message,
                "timestamp": _now(),
            }

        return {"status": "ready", "database": "connected", "timestamp": _now()}

    return router
