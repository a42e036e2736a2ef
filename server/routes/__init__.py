from fastapi import APIRouter
from . import auth, tasks

router = APIRouter(prefix="/api")

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
