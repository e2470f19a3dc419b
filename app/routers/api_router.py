from fastapi import APIRouter
from app.routers import leave, employees, cash_advance, liquidation

# Centralized API router hub
# Routers are aggregated here and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(leave.router, tags=["Leave"])
api_router.include_router(employees.router, tags=["Employees"])
api_router.include_router(cash_advance.router, tags=["Cash Advances"])
api_router.include_router(liquidation.router, tags=["Liquidations"])
