from fastapi import APIRouter
from app.api.v1.routes import generate, users, admin

api_router = APIRouter()

api_router.include_router(generate.router, prefix="/generate", tags=["generate"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
