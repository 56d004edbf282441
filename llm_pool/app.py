# LLM Pool - prioritized, rate-limited failover pool for LLM backends
# Copyright (C) 2025
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
FastAPI application exposing the LLM pool over HTTP.
"""
import html
import re
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings
from .errors import (
    ContractViolation,
    ExhaustionError,
    NoDestinations,
    PoolError,
)
from .models import ChatRequest, ChatResponse, DestinationInfo, Message, PromptRequest
from .pool_service import PoolService

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

HTML_FENCE = re.compile(r"```html\s*(.*?)\s*```", re.DOTALL)

# Global instance (cached)
_pool_instance: Optional[PoolService] = None


def get_pool_service() -> PoolService:
    """Get the pool instance, building it from settings on first use."""
    global _pool_instance

    if _pool_instance is None:
        destinations = settings.get_destinations()
        if not destinations:
            logger.warning("No destinations are configured")
        _pool_instance = PoolService(destinations, timeout=settings.request_timeout)
        logger.info(
            f"Initialized pool with {len(destinations)} destinations: {[d.name for d in destinations]}"
        )

    return _pool_instance


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global _pool_instance
    if _pool_instance is not None:
        await _pool_instance.aclose()
        _pool_instance = None


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    description=settings.api_description,
    version=settings.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> None:
    """Check the bearer key when one is configured."""
    if not settings.auth_key:
        return

    if credentials is None or credentials.credentials != settings.auth_key:
        logger.warning("Rejected request with missing or invalid API key")
        raise HTTPException(
            status_code=401,
            detail={
                "error": {
                    "message": "Unauthorized",
                    "type": "authentication_error"
                }
            }
        )


def clean_ai_html(text: str) -> str:
    """Strip a ```html fence if present and unescape HTML entities."""
    match = HTML_FENCE.search(text)
    cleaned = match.group(1) if match else text
    return html.unescape(cleaned)


def pool_error_to_http(exc: PoolError) -> HTTPException:
    """Map a pool error to an HTTP error response."""
    if isinstance(exc, NoDestinations):
        status_code = 503
    elif isinstance(exc, ExhaustionError):
        status_code = 502
    elif isinstance(exc, ContractViolation):
        status_code = 400
    else:
        # ConfigurationError and anything unexpected
        status_code = 500

    error: Dict[str, Any] = {"message": exc.message, "type": exc.error_type}
    if exc.destination:
        error["destination"] = exc.destination
    return HTTPException(status_code=status_code, detail={"error": error})


@app.get("/health", summary="Health check")
async def health_check(pool: PoolService = Depends(get_pool_service)) -> JSONResponse:
    """Health check endpoint."""
    healthy = pool.is_healthy()
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "destinations": pool.destination_count()
        }
    )


@app.post("/v1/chat", summary="Create chat completion", response_model=ChatResponse)
async def create_chat(
    request: ChatRequest,
    _: None = Depends(verify_api_key),
    pool: PoolService = Depends(get_pool_service)
) -> ChatResponse:
    """Send a canonical chat request through the pool."""
    try:
        return await pool.chat(request)
    except PoolError as e:
        logger.error(f"Chat request failed: {e}")
        raise pool_error_to_http(e)


@app.post("/create/ai", summary="Generate an HTML template")
async def create_template(
    body: PromptRequest,
    _: None = Depends(verify_api_key),
    pool: PoolService = Depends(get_pool_service)
) -> Dict[str, str]:
    """Generate an HTML template from a prompt using the configured system prompt."""
    request = ChatRequest(
        messages=[
            Message(role="system", content=settings.system_prompt),
            Message(role="user", content=body.prompt),
        ],
        temperature=settings.template_temperature,
        max_tokens=settings.template_max_tokens
    )
    try:
        response = await pool.chat(request)
    except PoolError as e:
        logger.error(f"Template generation failed: {e}")
        raise pool_error_to_http(e)

    return {"response": clean_ai_html(response.content)}


@app.get("/pool/stats", summary="Pool statistics")
async def pool_stats(
    _: None = Depends(verify_api_key),
    pool: PoolService = Depends(get_pool_service)
) -> Dict[str, Any]:
    """Get pool counters and per-destination statistics."""
    return pool.get_summary()


@app.get("/pool/destinations", summary="List destinations", response_model=List[DestinationInfo])
async def pool_destinations(
    _: None = Depends(verify_api_key),
    pool: PoolService = Depends(get_pool_service)
) -> List[DestinationInfo]:
    """List destinations in selection order with credentials masked."""
    return pool.list_destinations()


# Custom exception handler for better error responses
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Custom exception handler for HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.detail if isinstance(exc.detail, dict) else {"error": {"message": str(exc.detail)}}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Custom exception handler for general exceptions."""
    logger.error(f"Unhandled exception: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "Internal server error",
                "type": "internal_error"
            }
        }
    )
