"""Service-to-service ingestion (scheduled imports, gateways)."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.common.dependencies import verify_api_key
from sitedata.common.exceptions import NotFoundError
from sitedata.db.postgres import get_pg_session
from sitedata.ingestion.pipeline import DataIngestionService
from sitedata.ingestion.schemas import DataUploadRequest, DataUploadResult

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/sites/{site_id}/data", response_model=DataUploadResult)
async def ingest_site_data(
    site_id: int,
    data: DataUploadRequest,
    response: Response,
    file_name: Optional[str] = Query(None, alias="fileName", max_length=500),
    session: AsyncSession = Depends(get_pg_session),
):
    """Run the ingestion pipeline as the system (no uploading user)."""
    logger.info(f"Internal upload of {len(data.rows)} rows to site {site_id}")

    result = await DataIngestionService(session).process_upload(
        site_id, None, data, file_name=file_name
    )
    if result.upload_id is None:
        raise NotFoundError(detail=f"Site with ID {site_id} not found")
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result
