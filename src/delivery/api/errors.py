"""HTTP mapping for domain errors."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from delivery.errors import DeliveryError

STATUS_BY_KIND = {
    "not_found": 404,
    "forbidden": 403,
    "invalid_transition": 409,
    "invalid_state": 409,
    "already_resolved": 409,
    "dependency_failure": 502,
}


async def delivery_error_handler(request: Request, exc: DeliveryError) -> JSONResponse:
    return JSONResponse(status_code=STATUS_BY_KIND.get(exc.kind, 400), content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    """Protean's handlers for validation and lookup errors, plus ours for business rules."""
    register_exception_handlers(app)
    app.add_exception_handler(DeliveryError, delivery_error_handler)
