import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from requests.exceptions import RequestException
from sqlalchemy.exc import SQLAlchemyError
from web3.exceptions import Web3Exception

from raven_oracle.api.endpoints import credits, engagement, inference, settlement, users
from raven_oracle.core.context import AppContext, build_context
from raven_oracle.core.errors import ChainNotConfigured
from raven_oracle.core.settings import settings

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("raven_oracle.main")


ENDPOINTS = [
    "GET /health",
    "POST /engagement",
    "GET /users/{address}/credits",
    "GET /users/{address}/credits/pending",
    "GET /users/{address}/credits/calculated",
    "GET /users/{address}/subscription",
    "GET /users/{address}/has-active-subscription",
    "POST /memory/update",
    "POST /credits/calculate",
    "POST /credits/calculate-and-store",
    "POST /credits/initial-grant",
    "POST /inference/estimate",
    "POST /inference/authorize",
    "GET /credits/pending",
    "POST /credits/settle",
    "GET /credits/settle/status",
    "POST /credits/settle/resume",
]


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChainNotConfigured)
    async def chain_not_configured(_request: Request, exc: ChainNotConfigured):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(Web3Exception)
    async def chain_error(_request: Request, exc: Web3Exception):
        logger.warning("chain.call.failed error=%s", exc)
        return JSONResponse(status_code=502, content={"detail": str(exc) or "chain call failed"})

    @app.exception_handler(RequestException)
    async def rpc_unreachable(_request: Request, exc: RequestException):
        logger.warning("chain.rpc.unreachable error=%s", exc)
        return JSONResponse(status_code=502, content={"detail": "rpc unavailable"})

    @app.exception_handler(SQLAlchemyError)
    async def ledger_error(_request: Request, exc: SQLAlchemyError):
        logger.error("ledger.backend.error error=%s", exc)
        return JSONResponse(status_code=500, content={"detail": "ledger unavailable"})


def create_app(context: AppContext | None = None) -> FastAPI:
    app = FastAPI(title="Raven Oracle API")
    app.state.context = context

    origins = settings.resolved_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )

    install_error_handlers(app)

    @app.on_event("startup")
    async def startup() -> None:
        if app.state.context is None:
            app.state.context = build_context(settings)
        ctx: AppContext = app.state.context
        if ctx.settings.operator_auth_enabled and (
            ctx.settings.operator_username is None or ctx.settings.operator_password is None
        ):
            logger.warning("auth.operator.unconfigured settlement endpoints will answer 503")
        ctx.trigger.start()
        logger.info("startup.ready ledger=%s signer=%s", ctx.ledger.name, ctx.submitter is not None)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        ctx: AppContext | None = app.state.context
        if ctx is None:
            return
        await ctx.trigger.stop()
        ctx.close()

    app.include_router(engagement.router, tags=["engagement"])
    app.include_router(credits.router, tags=["credits"])
    app.include_router(users.router, tags=["users"])
    app.include_router(inference.router, tags=["inference"])
    app.include_router(settlement.router, tags=["settlement"])

    @app.get("/health")
    async def health_check():
        ctx: AppContext | None = app.state.context
        return {"status": "ok", "ledger": ctx.ledger.name if ctx else None}

    @app.get("/")
    async def read_root():
        return {
            "status": "ok",
            "service": "Raven Oracle API",
            "hint": "Use /health or documented endpoints",
            "endpoints": ENDPOINTS,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port)
