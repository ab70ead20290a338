"""
Control API - FastAPI app around one AutoSellEngine.

Routes:
    POST /start             start a run ({config, privateKeys})
    POST /stop              stop the current run
    GET  /status            engine snapshot (never includes secrets)
    POST /webhooks/helius   inbound enhanced-transaction feed

Errors are always {"error": message} with the matching status code.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .config import Settings
from .engine import AutoSellEngine
from .errors import AutoSellError
from .webhook import authenticate

logger = logging.getLogger(__name__)


class StartIn(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)
    privateKeys: List[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices("privateKeys", "accountCredentials"),
    )


def create_app(engine: Optional[AutoSellEngine] = None) -> FastAPI:
    app = FastAPI(title="autosell")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )
    app.state.engine = engine or AutoSellEngine.from_settings(Settings.from_env())

    @app.exception_handler(AutoSellError)
    async def autosell_error(request: Request, exc: AutoSellError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request body", "details": jsonable_encoder(exc.errors())}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse({"error": f"Internal error: {exc}"}, status_code=500)

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.engine.close()

    @app.post("/start")
    async def start(body: StartIn):
        result = await app.state.engine.start(body.config, body.privateKeys)
        n = len(result["accounts"])
        result["message"] = f"Auto-sell engine started with {n} wallets"
        return result

    @app.post("/stop")
    async def stop():
        result = await app.state.engine.stop()
        result["message"] = "Auto-sell engine stopped"
        return result

    @app.get("/status")
    async def status():
        return app.state.engine.status()

    @app.post("/webhooks/helius")
    async def helius_webhook(request: Request):
        engine: AutoSellEngine = app.state.engine
        authenticate(request.headers, engine.settings.webhook_secret)
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"error": "Body is not JSON"}, status_code=400)
        return await engine.handle_webhook(body)

    return app
