import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from securewatch.api.v1.api import router as api_router
from securewatch.config import settings
from securewatch.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """
    Build the API application.

    The behavioral queue runs inside the API process because violations
    recorded over HTTP enqueue their employee directly. The dispatcher runs
    in its own process (securewatch.worker.dispatcher).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.runtime is None:
            from securewatch.database import SessionLocal, engine

            app.state.runtime = build_runtime(engine, SessionLocal)
            if settings.LOAD_POLICIES_ON_STARTUP:
                app.state.runtime.loader.load_file(settings.POLICY_CONFIG_PATH)

        queue = app.state.runtime.behavior_queue
        if queue is not None:
            queue.start()
        yield
        if queue is not None:
            queue.stop()

    app = FastAPI(title="SecureWatch Policy Engine API", version="1.0.0", lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health_check(request: Request):
        rt: Optional[Runtime] = request.app.state.runtime
        if rt is None:
            return {"status": "starting"}
        missing = sorted(
            name
            for name, c in vars(rt.collaborators).items()
            if c is not None and not rt.capabilities.has(c.capability)
        )
        return {
            "status": "ok" if not missing else "degraded",
            "missing_stores": missing,
            "behavioral_queue": rt.behavior_queue.stats() if rt.behavior_queue else None,
        }

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
