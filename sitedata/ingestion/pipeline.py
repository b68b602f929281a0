"""
DataIngestionService: upload intake, validation, dedup/overwrite and persistence.

Each call records an Upload before doing anything else, so every attempt that
reaches an existing site leaves an audit row. Validation is all-or-nothing:
one error rejects the batch and no data rows are written. Past validation,
rows are reconciled one by one against what is stored for their calendar day.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.db.enums import UploadValidationStatus
from sitedata.db.models import DataRow, Site, Upload
from sitedata.inference.trigger import InferenceTrigger
from sitedata.ingestion.schemas import DataUploadRequest, DataUploadResult, ValidationIssue
from sitedata.ingestion.validator import DATE_FIELD, SchemaValidator

logger = logging.getLogger(__name__)

# Concurrency guard: one row reconciliation per site at a time in this process.
_SITE_LOCKS: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

# First key of the two-key advisory lock, keeping these locks apart from others in the database.
INGESTION_ADVISORY_NAMESPACE = 7301


class DataIngestionService:
    def __init__(
        self,
        session: AsyncSession,
        site_locks: Optional[dict[int, asyncio.Lock]] = None,
    ):
        self.session = session
        self._locks = _SITE_LOCKS if site_locks is None else site_locks

    async def process_upload(
        self,
        site_id: int,
        user_id: Optional[int],
        request: DataUploadRequest,
        file_name: Optional[str] = None,
    ) -> DataUploadResult:
        """Validate and store a batch of daily rows for a site.

        ``user_id`` is None for system-originated uploads. Expected failures
        (unknown site, validation errors) are reported in the result rather
        than raised.
        """
        result = DataUploadResult(rows_parsed=len(request.rows))

        site = await self.session.get(Site, site_id)
        if site is None:
            result.errors.append(ValidationIssue(
                row_index=-1,
                date=None,
                field="siteId",
                message=f"Site with ID {site_id} not found",
            ))
            return result

        now = datetime.now(timezone.utc)
        upload = Upload(
            site_id=site.id,
            user_id=user_id,
            uploaded_at=now,
            file_name=file_name or f"api-upload-{now:%Y%m%d-%H%M%S}.json",
            rows_parsed=len(request.rows),
            rows_inserted=0,
            validation_status=UploadValidationStatus.PENDING,
        )
        self.session.add(upload)
        await self.session.commit()
        result.upload_id = upload.id

        if not request.skip_validation:
            warnings, errors = await SchemaValidator(self.session).validate(site, request.rows)
            result.warnings.extend(warnings)
            result.errors.extend(errors)

            if errors:
                upload.validation_status = UploadValidationStatus.INVALID
                upload.error_message = f"{len(errors)} validation error(s) found"
                await self.session.commit()
                logger.info(
                    f"Upload {upload.id} for site {site.id} rejected: "
                    f"{len(errors)} validation error(s)"
                )
                return result

        # No transaction may stay open while waiting for the site lock.
        await self.session.commit()

        async with self._locks[site.id]:
            await self._reconcile_rows(site, request, result)

            upload.rows_inserted = result.rows_inserted + result.rows_updated
            upload.validation_status = (
                UploadValidationStatus.VALIDATED
                if not result.errors
                else UploadValidationStatus.INVALID
            )
            await self.session.commit()

        result.success = not result.errors

        if result.success and site.auto_inference_enabled:
            inference_request = await InferenceTrigger(self.session).trigger(site.id, user_id)
            if inference_request is not None:
                result.inference_triggered = True
                result.inference_request_id = inference_request.id

        logger.info(
            f"Upload {upload.id} for site {site.id}: {result.rows_inserted} inserted, "
            f"{result.rows_updated} updated, {result.rows_skipped} skipped"
        )
        return result

    async def _reconcile_rows(
        self,
        site: Site,
        request: DataUploadRequest,
        result: DataUploadResult,
    ) -> None:
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(
                text("SELECT pg_advisory_xact_lock(:namespace, :site_id)"),
                {"namespace": INGESTION_ADVISORY_NAMESPACE, "site_id": site.id},
            )

        days = {row.day for row in request.rows}
        existing = await self.session.execute(
            select(DataRow).where(DataRow.site_id == site.id, DataRow.date.in_(sorted(days)))
        )
        rows_by_day: dict[date, DataRow] = {row.date: row for row in existing.scalars()}

        # The pointer may have moved since validation; new data is tagged with the current one.
        schema_version_id = await self._current_schema_version_id(site.id)

        for index, row in enumerate(request.rows):
            day = row.day
            stored = rows_by_day.get(day)

            if stored is None:
                stored, inserted = await self._insert_row(
                    site.id, day, row.sensor_data, schema_version_id
                )
                rows_by_day[day] = stored
                if inserted:
                    result.rows_inserted += 1
                    continue

            if request.overwrite_existing:
                stored.sensor_data = dict(row.sensor_data)
                stored.schema_version_id = schema_version_id
                result.rows_updated += 1
            else:
                result.rows_skipped += 1
                result.warnings.append(ValidationIssue(
                    row_index=index,
                    date=row.date,
                    field=DATE_FIELD,
                    message=f"Data for {day:%Y-%m-%d} already exists. Use OverwriteExisting to update.",
                ))

        await self.session.flush()

    async def _current_schema_version_id(self, site_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(Site.current_schema_version_id).where(Site.id == site_id)
        )
        return result.scalar_one_or_none()

    async def _insert_row(
        self,
        site_id: int,
        day: date,
        sensor_data: dict,
        schema_version_id: Optional[int],
    ) -> tuple[DataRow, bool]:
        """Insert a row for ``day``; if another writer got there first, return theirs instead.

        The second element is True when this call created the row.
        """
        data_row = DataRow(
            site_id=site_id,
            schema_version_id=schema_version_id,
            date=day,
            sensor_data=dict(sensor_data),
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self.session.begin_nested():
                self.session.add(data_row)
        except IntegrityError:
            result = await self.session.execute(
                select(DataRow).where(DataRow.site_id == site_id, DataRow.date == day)
            )
            stored = result.scalar_one_or_none()
            if stored is None:
                raise
            logger.warning(
                f"Row for site {site_id} on {day:%Y-%m-%d} was inserted concurrently; reconciling"
            )
            return stored, False
        return data_row, True
