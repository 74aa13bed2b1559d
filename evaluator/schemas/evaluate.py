from pydantic import BaseModel, ConfigDict, Field

from evaluator.schemas.valuation import ValuationResult


class EvaluateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ref_number: str = Field(alias="refNumber", min_length=1)


class EvaluateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    data: ValuationResult
    processing_time: str = Field(alias="processingTime")


class ErrorResponse(BaseModel):
    error: str
    message: str


class ConnectionTestData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    service: str
    page_title: str = Field(alias="pageTitle")
    timestamp: str


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    data: ConnectionTestData | None = None
    error: str | None = None
