import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

import accounts
import database
from classifier import build_classifier
from complaints_api import router as complaints_router
from config import Settings
from errors import register_error_handlers
from security import clear_session_cookie, create_token, get_db, get_settings, set_session_cookie
from staff_api import admin_router, partner_router, superadmin_router
from storage import LocalImageStore

APP_NAME = "Civic Complaints API"

log = logging.getLogger(__name__)


# ---------- Models for requests ----------
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


def _session_body(user: dict, token: str) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "anonymousName": user.get("anonymousName"),
        "token": token,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    owns_client = app.state.db is None
    if owns_client:
        app.state.db = database.connect(settings)
    database.ensure_indexes(app.state.db)
    if app.state.classifier is None:
        app.state.classifier = build_classifier(settings.classifier_min_confidence)
    accounts.bootstrap_superadmin(app.state.db, settings)
    log.info("%s ready", APP_NAME)
    yield
    if owns_client:
        app.state.db.client.close()


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    classifier=None,
    image_store: Optional[LocalImageStore] = None,
) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    app = FastAPI(title=APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.classifier = classifier
    app.state.image_store = image_store or LocalImageStore(
        settings.upload_dir, settings.upload_url_prefix, settings.allowed_image_extensions
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # ---------- Basic routes ----------
    @app.get("/")
    def root():
        return {"message": f"{APP_NAME} running"}

    @app.get("/test")
    def test_database(db: Database = Depends(get_db)):
        info = {
            "backend": "running",
            "database": "disconnected",
            "collections": [],
        }
        try:
            if db is not None:
                info["collections"] = db.list_collection_names()[:10]
                info["database"] = "connected"
        except Exception as e:
            log.warning("database probe failed: %s", e)
            info["database"] = "error"
        return info

    # ---------- Auth endpoints ----------
    @app.post("/api/auth/register", status_code=201)
    def register(req: RegisterRequest, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        user = accounts.create_user(db, name=req.name, email=req.email, password=req.password)
        token = create_token(str(user["_id"]), settings)
        set_session_cookie(response, token, settings)
        return _session_body(user, token)

    @app.post("/api/auth/login")
    def login(req: LoginRequest, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        user = accounts.authenticate(db, req.email, req.password)
        token = create_token(str(user["_id"]), settings)
        set_session_cookie(response, token, settings)
        return _session_body(user, token)

    @app.post("/api/auth/logout")
    def logout(response: Response, settings: Settings = Depends(get_settings)):
        clear_session_cookie(response, settings)
        return {"message": "Logged out successfully"}

    app.include_router(complaints_router)
    app.include_router(admin_router)
    app.include_router(superadmin_router)
    app.include_router(partner_router)
    app.mount(settings.upload_url_prefix, StaticFiles(directory=app.state.image_store.root), name="uploads")
    return app


app = create_app()
