from fastapi import APIRouter

from evaluator.api.v1 import evaluate

api_router = APIRouter(prefix="/api")

api_router.include_router(evaluate.router, tags=["Evaluate"])
