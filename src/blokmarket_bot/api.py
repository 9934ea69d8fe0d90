import logging
from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, Response

from .config import Settings, setup_logging
from .storage import LicenseStore

logger = logging.getLogger(__name__)


class ValidateRequest(BaseModel):
    key: Optional[str] = None
    # Roblox clients encode UserId as a JSON number.
    robloxId: Optional[Union[str, int]] = None


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


class PreflightCORSMiddleware(CORSMiddleware):
    """CORS middleware whose successful preflight answer has an empty body."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            name: value
            for name, value in response.headers.items()
            if name not in ("content-length", "content-type")
        }
        return Response(status_code=200, headers=headers)


def create_app(settings: Settings, licenses: Optional[LicenseStore] = None) -> FastAPI:
    """Build the license validation API.

    ``licenses`` is shared with the bot when both run in one process so every
    write goes through the same store lock.
    """
    licenses = licenses or LicenseStore(settings.licenses_path)

    app = FastAPI(title="BlokMarket License API", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.licenses = licenses

    allow_origins = ["*"] if "*" in settings.cors_origins else list(settings.cors_origins)
    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=allow_origins,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and unsupported methods both read as a missing endpoint.
        if exc.status_code in (404, 405):
            return _failure(404, "Endpoint not found")
        return _failure(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(error.get("type") == "json_invalid" for error in errors):
            logger.warning("[API] Malformed JSON body on %s", request.url.path)
            return _failure(500, "Internal server error")
        return _failure(400, "Missing required field: key")

    @app.options("/{path:path}")
    async def preflight(path: str):
        return Response(status_code=200)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/validate")
    async def validate_license(payload: ValidateRequest):
        if not payload.key:
            return _failure(400, "Missing required field: key")

        try:
            return await _validate(payload.key, payload.robloxId)
        except Exception:  # noqa: BLE001
            logger.exception("[API] Validation failed for %s", payload.key)
            return _failure(500, "Internal server error")

    async def _validate(key: str, roblox_id: Optional[Union[str, int]]):
        license_record = await licenses.find_by_key(key)
        if license_record is None:
            logger.warning("[API] Invalid key attempt: %s", key)
            return {"success": False, "message": "Invalid license key"}

        if roblox_id not in (None, "") and str(roblox_id) != license_record.roblox_id:
            logger.warning(
                "[API] Roblox ID mismatch for %s: expected %s, got %s",
                key,
                license_record.roblox_id,
                roblox_id,
            )
            return {"success": False, "message": "License key does not match Roblox ID"}

        license_record = await licenses.touch_last_used(key) or license_record
        data = {
            "robloxId": license_record.roblox_id,
            "discordId": license_record.discord_id,
            "createdAt": license_record.created_at,
            "lastUsed": license_record.last_used,
        }
        if license_record.webhook_url:
            data["webhookUrl"] = license_record.webhook_url
        if license_record.webhook_user_key:
            data["webhookUserKey"] = license_record.webhook_user_key

        logger.info("[API] Validated %s for Roblox ID %s", key, license_record.roblox_id)
        return {"success": True, "message": "License validated successfully", "data": data}

    return app


def run() -> None:
    import uvicorn

    settings = Settings()
    setup_logging(settings)
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port, reload=False)


if __name__ == "__main__":
    run()
