import logging
import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from evaluator.core.exceptions import EvaluationError
from evaluator.schemas.evaluate import (
    ConnectionTestResponse,
    ErrorResponse,
    EvaluateRequest,
    EvaluateResponse,
)
from evaluator.services.orchestrator import orchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/evaluate",
    response_model=EvaluateResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Evaluate a watch reference",
    description="Look up the current market price range for a watch reference number and return a target purchase price of 80% of the lowest observed price, with a confidence rating based on the spread of the range. Runs a full browser session; expect 30-120 seconds.",
)
async def evaluate(request: EvaluateRequest):
    """Run one valuation. Classified failures are mapped by the app's error handler."""
    started = time.monotonic()
    logger.info("Starting evaluation for reference number: %s", request.ref_number)

    result = await orchestrator.evaluate(request.ref_number)

    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info("Evaluation completed in %dms for reference: %s", elapsed_ms, result.ref_number)
    return EvaluateResponse(data=result, processing_time=f"{elapsed_ms}ms")


@router.get(
    "/test",
    response_model=ConnectionTestResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    summary="Connection test",
    description="Open a throwaway browser session, load the target site's home page and report its title. Useful for checking that the browser stack and stealth profile can reach the site.",
)
async def connection_test():
    try:
        data = await orchestrator.test_connection()
    except EvaluationError as e:
        logger.warning("Connection test failed: %s", e.detail)
        body = ConnectionTestResponse(
            success=False, message="Service connection test failed", error=e.public_message
        )
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))
    return ConnectionTestResponse(
        success=True, message="Service connection test successful", data=data
    )
