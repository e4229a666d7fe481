"""
storefront/routers/consultas.py — Public contact form
Endpoint: /api/consultas
"""
from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from storefront.core.api_validation import ApiValidationConfig, ValidatedRequest, create_api_handler
from storefront.core.rate_limiter import registro_rate_limit
from storefront.models import ConsultaRequest
from storefront.services.inquiries import create_inquiry

router = APIRouter()


async def create_consulta(request: Request, ctx: ValidatedRequest) -> Response:
    consulta_id = create_inquiry(request.app.state.engine, ctx.body)
    return JSONResponse(
        {"success": True, "message": "Consulta enviada exitosamente", "data": {"id": consulta_id}},
        status_code=status.HTTP_201_CREATED,
    )


router.add_api_route(
    "/consultas",
    create_api_handler(
        ApiValidationConfig(
            schema=ConsultaRequest,
            rate_limit=registro_rate_limit,
            allowed_methods=("POST",),
            max_body_size=4096,
        ),
        create_consulta,
    ),
    methods=["POST"],
)
