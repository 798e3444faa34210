from pydantic import BaseModel, Field


class AnalyzeTextRequest(BaseModel):
    text: str = Field(..., min_length=1)


class AnalysisResponse(BaseModel):
    analyzed: bool
    amount: float | None = None
    renewal_date: str | None = None
    parties: list[str] = []
    truncated: bool = False
    failure: str | None = None
    failure_detail: str | None = None


class InferrerCheckResponse(BaseModel):
    configured: bool
    model: str
