from fastapi import APIRouter

from leave_ledger.api.allocations import allocations_router
from leave_ledger.api.balances import employee_balance_router, employee_grants_router
from leave_ledger.api.calendar import calendar_router
from leave_ledger.api.grants import cron_router, grants_router
from leave_ledger.api.leave_requests import leave_requests_router
from leave_ledger.api.policies import router as policies_router

api_router = APIRouter()
api_router.include_router(policies_router)
api_router.include_router(calendar_router)
api_router.include_router(grants_router)
api_router.include_router(cron_router)
api_router.include_router(employee_balance_router)
api_router.include_router(employee_grants_router)
api_router.include_router(allocations_router)
api_router.include_router(leave_requests_router)
