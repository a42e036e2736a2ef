import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import inspect
from server.config import config
from server.database import engine, Base
from server.dependencies import get_db
from server.routes import router
from server import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

# =========================================================
# FASTAPI APP
# =========================================================

app = FastAPI(title="Task Manager API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API Router
app.include_router(router)

# =========================================================
# ERROR BODIES
# =========================================================
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "errors": jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
        },
    )

@app.get("/")
def health():
    return {"message": "Task Manager API is running!"}

# =========================================================
# AUTO-CREATE TABLES ON STARTUP
# =========================================================
@app.on_event("startup")
def init_database():
    logger.info("Creating database tables if not exist...")
    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    Base.metadata.create_all(bind=engine)
    if not existing_tables:
        logger.info("Tables created")
    else:
        logger.info(f"Tables already exist: {existing_tables}")

__all__ = ["app", "get_db"]
