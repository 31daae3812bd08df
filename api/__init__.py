from fastapi import APIRouter
from .auth import router as auth_router
from .compile import router as compile_router
from .projects import router as projects_router
from .jobs import router as jobs_router
from .subscriptions import router as subscriptions_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(compile_router)
router.include_router(projects_router)
router.include_router(jobs_router)
router.include_router(subscriptions_router)
