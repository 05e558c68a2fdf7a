# errors.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger("uvicorn")


class BillingError(Exception):
    """Base for every error the billing engine raises on purpose."""
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.detail}


class ValidationError(BillingError):
    status_code = 400


class NotFoundError(BillingError):
    status_code = 404


class ConflictError(BillingError):
    status_code = 409


class InternalError(BillingError):
    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        # storage internals never leave the process
        return {"error": "internal server error"}


class MeterAssignmentError(ValidationError):
    """
    Raised after a meter fan-out in which at least one item failed.
    `applied` lists the ownership changes that already took effect.
    """

    def __init__(self, errors: List[str], applied: Optional[List[Dict[str, Any]]] = None):
        super().__init__("meter assignment failed: " + "; ".join(errors))
        self.errors = list(errors)
        self.applied = list(applied or [])

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.detail, "errors": self.errors, "applied": self.applied}


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("internal error on %s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))
