from fastapi import APIRouter

from lifecycle.api.v1 import account_deletion, admin, billing, quota

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(account_deletion.router)
api_router.include_router(quota.router)
api_router.include_router(billing.router)
api_router.include_router(admin.router)
