from fastapi import APIRouter
from .system import router as system_router
from .logs import router as logs_router
from .plugins import router as plugins_router
from .records import router as records_router
from .settings import router as settings_router

api_router = APIRouter()

api_router.include_router(system_router)
api_router.include_router(logs_router)
api_router.include_router(plugins_router)
api_router.include_router(records_router)
api_router.include_router(settings_router)
