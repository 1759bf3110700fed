from fastapi import APIRouter
from microlearning.api.endpoints import training_items, review_periods, websocket

api_router = APIRouter()
api_router.include_router(training_items.router, prefix="/training", tags=["training"])
api_router.include_router(review_periods.router, prefix="/review-periods", tags=["review-periods"])

ws_router = APIRouter()
ws_router.include_router(websocket.router, tags=["ws"])
