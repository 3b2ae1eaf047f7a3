from fastapi import APIRouter
from .farmers import router as farmers_router
from .stock import router as stock_router
from .cycles import router as cycles_router
from .sales import router as sales_router
from .jobs import router as jobs_router

api_router = APIRouter()
api_router.include_router(farmers_router)
api_router.include_router(stock_router)
api_router.include_router(cycles_router)
api_router.include_router(sales_router)
api_router.include_router(jobs_router)
