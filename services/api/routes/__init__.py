from fastapi import APIRouter
from .auth import router as auth_router
from .tracked_items import router as tracked_items_router

router = APIRouter(prefix="/api")

router.include_router(auth_router)
router.include_router(tracked_items_router)
