import asyncio

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from contract_finder.config import settings
from contract_finder.dependencies import get_inferrer, require_user
from contract_finder.schemas.analysis import AnalysisResponse, AnalyzeTextRequest, InferrerCheckResponse
from contract_finder.services.extraction_service import ExtractionFailure, extract
from contract_finder.services.inference_service import FieldInferrer

router = APIRouter(prefix="/analyze", tags=["analysis"], dependencies=[Depends(require_user)])


@router.post("", response_model=AnalysisResponse)
async def analyze_text(body: AnalyzeTextRequest, inferrer: FieldInferrer = Depends(get_inferrer)):
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Text content is required")
    result = await inferrer.infer(body.text)
    return AnalysisResponse(
        analyzed=inferrer.configured,
        amount=result.amount,
        renewal_date=result.renewal_date,
        parties=result.parties,
        truncated=len(body.text) > settings.extract_max_chars,
    )


@router.post("/document", response_model=AnalysisResponse)
async def analyze_document(file: UploadFile = File(...), inferrer: FieldInferrer = Depends(get_inferrer)):
    # Uploads are analysed in memory and never written to disk.
    max_bytes = settings.max_upload_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    content = b"".join(chunks)
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    extracted = await asyncio.to_thread(extract, content, file.content_type)
    if isinstance(extracted, ExtractionFailure):
        return AnalysisResponse(
            analyzed=False,
            failure=extracted.kind.value,
            failure_detail=extracted.detail,
        )

    result = await inferrer.infer(extracted.text)
    return AnalysisResponse(
        analyzed=inferrer.configured,
        amount=result.amount,
        renewal_date=result.renewal_date,
        parties=result.parties,
        truncated=extracted.truncated,
    )


@router.get("/check", response_model=InferrerCheckResponse)
async def check_inferrer(inferrer: FieldInferrer = Depends(get_inferrer)):
    return InferrerCheckResponse(configured=inferrer.configured, model=inferrer.model)
