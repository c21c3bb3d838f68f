"""
Chat endpoint.

POST /api/ai/chat
Body: {"message": str, "mode": "DeepSearch" | "Think", "image": data URL (optional)}
Returns: {"content": str}

Errors are raised as AppError / OrchestrationError and rendered as the
error envelope by the application's exception handlers.
"""
from fastapi import APIRouter, Depends

from tonerweb.core.logging import get_logger
from tonerweb.models.chat import ChatRequest, ChatResponse, ErrorEnvelope
from tonerweb.routes.deps import get_services
from tonerweb.services.container import ServiceContainer
from tonerweb.services.providers.vision import parse_image_data_url

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorEnvelope}, 429: {"model": ErrorEnvelope}, 503: {"model": ErrorEnvelope}},
)
async def chat(body: ChatRequest, services: ServiceContainer = Depends(get_services)):
    """
    Answer a product question.

    The query is classified and routed to search, reasoning or both; an
    attached image is analyzed first and its description added to the
    prompt. Image data URLs are checked here so malformed uploads get a 400
    instead of a degraded answer.
    """
    if body.image is not None:
        security = services.settings.security
        parse_image_data_url(body.image, security.allowed_image_types, security.max_image_size)

    result = await services.orchestrator.handle(body.message, body.mode, body.image)

    logger.info(
        "chat_request_completed",
        mode=body.mode,
        strategy=result.classification.strategy.value,
        cache_hit=result.cache_hit,
        has_image=body.image is not None,
    )
    return ChatResponse(content=result.content)
