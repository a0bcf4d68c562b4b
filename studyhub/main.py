import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth_dep import get_optional_user
from .db import init_db
from .errors import install_error_handlers
from .llm import ChatCompletionClient
from .models import User
from .rate_limit import RateGate
from .routes import auth, chat, notes, tasks
from .settings import settings
from .utils import to_iso, utcnow

logger = logging.getLogger("studyhub")
logging.basicConfig(level=settings.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Study Hub API started")
    yield
    app.state.llm.close()


def _cors_origins() -> list[str]:
    return [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["*"]


def create_app() -> FastAPI:
    app = FastAPI(title="Study Hub API", lifespan=lifespan)

    origins = _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.state.login_gate = RateGate(
        settings.LOGIN_RATE_WINDOW_SECONDS,
        settings.LOGIN_RATE_MAX,
        message="Too many login attempts, please try again later",
    )
    app.state.register_gate = RateGate(
        settings.REGISTER_RATE_WINDOW_SECONDS,
        settings.REGISTER_RATE_MAX,
        message="Too many registration attempts, please try again later",
    )
    app.state.llm = ChatCompletionClient(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.OPENAI_TIMEOUT_SECONDS,
    )

    app.include_router(auth.router)
    app.include_router(tasks.router)
    app.include_router(notes.router)
    app.include_router(chat.router)

    @app.get("/health")
    def health(user: Optional[User] = Depends(get_optional_user)):
        return {
            "status": "ok",
            "service": "studyhub",
            "timestamp": to_iso(utcnow()),
            "authenticated": user is not None,
        }

    return app


app = create_app()
