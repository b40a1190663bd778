from fastapi import APIRouter
from salary_engine.routers import salary

# Centralized API router hub
# Routers are aggregated here; main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(salary.router, tags=["Salary"])
