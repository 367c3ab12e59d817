"""FastAPI application exposing the gateway over HTTP."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import Settings, get_settings
from .errors import GatewayError
from .gateway import ChatGateway
from .logging_config import setup_logging
from .models import model_groups
from .providers.openrouter import OpenRouterProvider
from .ratelimit import SlidingWindowRateLimiter, client_identifier, config_for_path
from .types import Credentials, GenerationRequest

logger = logging.getLogger(__name__)

OPENROUTER_KEY_PREFIX = "sk-or-v1-"


# =============================================================================
# Request Bodies
# =============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageBody(CamelModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[Dict[str, Any]]]


class AttachmentBody(CamelModel):
    name: str
    url: str
    mime_type: str


class CredentialsBody(CamelModel):
    open_router_key: Optional[str] = None
    gemini_key: Optional[str] = None
    groq_key: Optional[str] = None


class CustomizationBody(CamelModel):
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    user_interests: Optional[str] = None


class GenerateBody(CamelModel):
    model_id: str
    messages: List[MessageBody]
    search_enabled: bool = False
    thinking_enabled: bool = False
    thinking_budget: Optional[int] = None
    attachments: List[AttachmentBody] = Field(default_factory=list)
    credentials: Optional[CredentialsBody] = None
    customization: Optional[CustomizationBody] = None
    think_enabled: bool = False
    model_base: Optional[str] = None

    def to_request(self) -> GenerationRequest:
        request: GenerationRequest = {
            "messages": [m.model_dump() for m in self.messages],
            "model_id": self.model_id,
            "search_enabled": self.search_enabled,
            "thinking_enabled": self.thinking_enabled,
            "thinking_budget": self.thinking_budget,
            "attachments": [a.model_dump() for a in self.attachments],
            "think_enabled": self.think_enabled,
            "model_base": self.model_base,
        }
        if self.customization is not None:
            request["customization"] = self.customization.model_dump()
        return request

    def to_credentials(self) -> Credentials:
        if self.credentials is None:
            return {}
        return self.credentials.model_dump(exclude_none=True)


class ValidateKeyBody(CamelModel):
    api_key: Optional[str] = None


# =============================================================================
# Application
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[ChatGateway] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Operator configuration, defaults to the environment
        gateway: Prebuilt gateway; by default one is created in the
            lifespan around a shared httpx client

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(timeout=settings.fetch_timeout) as http_client:
            app.state.http_client = http_client
            app.state.gateway = gateway or ChatGateway(settings, http_client)
            logger.info("Gateway ready")
            yield
        logger.info("Gateway stopped")

    app = FastAPI(title="llmgate", lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiter = SlidingWindowRateLimiter()

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if not settings.rate_limit_enabled:
            return await call_next(request)

        limiter: SlidingWindowRateLimiter = request.app.state.rate_limiter
        config = config_for_path(request.url.path)
        peer = request.client.host if request.client else None
        identifier = f"{client_identifier(request.headers, peer)}:{request.url.path}"
        result = limiter.check(identifier, config)
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(int(result.reset_time)),
        }

        if not result.success:
            logger.warning("Rate limit exceeded for %s", identifier)
            headers["Retry-After"] = str(result.retry_after(limiter.now()))
            return JSONResponse(
                {"error": "Too many requests", "errorType": "RATE_LIMIT"},
                status_code=429,
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logger.warning("Request failed (%s): %s", exc.status_code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    @app.post("/generate")
    async def generate(body: GenerateBody, request: Request):
        """Stream a reply, or return a generated image for image models."""
        gateway: ChatGateway = request.app.state.gateway
        try:
            result = await gateway.handle(body.to_request(), body.to_credentials())
        except GatewayError:
            raise
        except Exception:
            logger.exception("Generation failed")
            return JSONResponse({"error": "Network or server error"}, status_code=502)

        if isinstance(result, dict):
            return {"generatedImage": result}
        return StreamingResponse(
            result,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/models")
    async def list_models():
        """Model catalog grouped by provider family."""
        return {
            group: [
                {
                    "id": m.id,
                    "name": m.display_name,
                    "provider": m.provider_family,
                    "vendor": m.vendor,
                    "contextLength": m.context_length,
                    "capabilities": sorted(m.capabilities),
                }
                for m in models
            ]
            for group, models in model_groups().items()
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/validate-openrouter-key")
    async def validate_openrouter_key(body: ValidateKeyBody, request: Request):
        if not body.api_key or not body.api_key.startswith(OPENROUTER_KEY_PREFIX):
            return JSONResponse({"error": "Invalid API key format"}, status_code=400)

        provider = OpenRouterProvider(
            api_key=body.api_key,
            base_url=settings.openrouter_base_url,
            http_client=request.app.state.http_client,
            app_url=settings.app_url,
            app_title=settings.app_title,
        )
        try:
            valid = await provider.validate_key()
        except Exception:
            logger.exception("API key validation error")
            return JSONResponse({"error": "Validation failed"}, status_code=500)

        if not valid:
            return JSONResponse({"error": "Invalid API key"}, status_code=401)
        return {"valid": True}

    logger.info("FastAPI application initialized")
    return app
