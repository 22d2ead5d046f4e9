"""Direct generation and account endpoints.

- POST /api/generate/image - Generate (or edit) one image, blocking until done
- POST /api/generate/{context}/cancel - Cancel a running direct generation
- POST /api/credentials - Replace the API keys
- GET /api/models - Available image models
- GET /api/balance - Balance of the current API key
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from hibiscus.api.dependencies import get_client
from hibiscus.services.exceptions import ErrorKind, ServiceError
from hibiscus.services.generation.classifier import describe_error
from hibiscus.services.generation.client import EDIT_CONTEXT, IMAGE_CONTEXT, GenerationClient

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["generation"])

ERROR_STATUS = {
    ErrorKind.AUTH: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.BALANCE: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.RESOLUTION_LIMIT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EXHAUSTED_RETRIES: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


# Request/Response Models


class GenerateImageRequest(BaseModel):
    prompt: str = Field(..., description="Generation prompt", min_length=1, max_length=4000)
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Generation parameters; an 'image' entry makes this an edit",
    )


class CancelContextResponse(BaseModel):
    context: str
    cancelled: bool = Field(..., description="False if nothing was running")


class CredentialsRequest(BaseModel):
    api_key: str = Field(..., description="Comma-separated API keys")


class CredentialsResponse(BaseModel):
    count: int = Field(..., description="Number of keys configured")


class BalanceResponse(BaseModel):
    balance: Optional[float] = Field(default=None, description="None when unknown")


# API Endpoints


@router.post(
    "/generate/image",
    responses={204: {"description": "Cancelled before completion"}},
)
async def generate_image(
    request: GenerateImageRequest,
    client: GenerationClient = Depends(get_client),
) -> Response:
    """Generate one image, retrying through safety-filter rejections.

    Returns the image bytes. The number of attempts is reported in the
    ``X-Attempts`` header.

    Raises:
        HTTPException 401/402: Credential problems
        HTTPException 400: Invalid request (e.g. resolution too high)
        HTTPException 422: Safety filter rejected every attempt
        HTTPException 502: Upstream kept failing
    """
    try:
        if request.params.get("image"):
            result = await client.edit_image(request.prompt, request.params)
        else:
            result = await client.generate_image(request.prompt, request.params)
    except ServiceError as e:
        info = describe_error(e)
        logger.warning("api.generate.failed", error_kind=info.kind.value, error_message=str(e))
        raise HTTPException(
            status_code=ERROR_STATUS.get(info.kind, status.HTTP_502_BAD_GATEWAY),
            detail={"kind": info.kind.value, "message": info.display},
        )

    if result is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={"X-Attempts": str(result.attempts)},
    )


@router.post("/generate/{context}/cancel", response_model=CancelContextResponse)
async def cancel_generation(
    context: str, client: GenerationClient = Depends(get_client)
) -> CancelContextResponse:
    if context not in (IMAGE_CONTEXT, EDIT_CONTEXT):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown context")
    return CancelContextResponse(context=context, cancelled=client.cancel(context))


@router.post("/credentials", response_model=CredentialsResponse)
async def update_credentials(
    request: CredentialsRequest, client: GenerationClient = Depends(get_client)
) -> CredentialsResponse:
    return CredentialsResponse(count=client.configure_credentials(request.api_key))


@router.get("/models")
async def list_models(client: GenerationClient = Depends(get_client)) -> list[Any]:
    return await client.load_image_models()


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(client: GenerationClient = Depends(get_client)) -> BalanceResponse:
    return BalanceResponse(balance=await client.fetch_balance())
