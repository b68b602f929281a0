import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.db.enums import InferenceRequestStatus
from sitedata.db.models import InferenceRequest, ModelVersion

logger = logging.getLogger(__name__)


class InferenceTrigger:
    """Queues inference requests for an external worker; nothing is executed here."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_model(self, site_id: int) -> Optional[ModelVersion]:
        result = await self.session.execute(
            select(ModelVersion)
            .where(ModelVersion.site_id == site_id, ModelVersion.is_active == True)
            .order_by(ModelVersion.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def trigger(self, site_id: int, user_id: Optional[int]) -> Optional[InferenceRequest]:
        """Create a Pending request against the site's active model.

        Returns None, without writing anything, when the site has no active model.
        """
        model = await self.get_active_model(site_id)
        if model is None:
            logger.info(f"No active model for site {site_id}, skipping inference")
            return None

        request = InferenceRequest(
            site_id=site_id,
            user_id=user_id,
            requested_at=datetime.now(timezone.utc),
            status=InferenceRequestStatus.PENDING,
            input_payload={"modelVersionId": model.id},
        )
        self.session.add(request)
        await self.session.commit()

        logger.info(
            f"Triggered inference request {request.id} for site {site_id} using model {model.id}"
        )
        return request
