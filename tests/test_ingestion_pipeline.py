import asyncio
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from sitedata.admin.service import create_schema_version
from sitedata.db.enums import InferenceRequestStatus, UploadValidationStatus
from sitedata.db.models import DataRow, InferenceRequest, Upload
from sitedata.ingestion.pipeline import DataIngestionService
from sitedata.ingestion.schemas import DataUploadRequest
from sitedata.ingestion.validator import (
    DATE_FIELD,
    NO_SCHEMA_MESSAGE,
    SCHEMA_FIELD,
    SchemaValidator,
)
from tests.factories import make_model, make_schema, make_user


def _request(*rows, overwrite=False, skip_validation=False):
    return DataUploadRequest(
        rows=[{"date": day, "sensorData": data} for day, data in rows],
        overwrite_existing=overwrite,
        skip_validation=skip_validation,
    )


def _future_day() -> date:
    return datetime.now(timezone.utc).date() + timedelta(days=2)


async def _count_rows(session_factory, site_id) -> int:
    async with session_factory() as s:
        result = await s.execute(select(func.count(DataRow.id)).where(DataRow.site_id == site_id))
        return result.scalar_one()


async def test_site_without_schema_inserts_all_rows(session, site):
    request = _request(
        ("2025-06-01", {"temperature": 21}),
        ("2025-06-02", {"temperature": 22}),
        ("2025-06-03", {"temperature": 23}),
    )

    result = await DataIngestionService(session).process_upload(site.id, None, request)

    assert result.success
    assert result.rows_parsed == 3
    assert result.rows_inserted == 3
    assert result.rows_skipped == 0
    assert result.errors == []
    assert len(result.warnings) == 1
    assert result.warnings[0].field == SCHEMA_FIELD
    assert result.warnings[0].message == NO_SCHEMA_MESSAGE

    upload = await session.get(Upload, result.upload_id)
    assert upload.validation_status == UploadValidationStatus.VALIDATED
    assert upload.rows_inserted == 3
    assert upload.file_name.startswith("api-upload-")


async def test_resubmitting_a_batch_skips_every_row(session, session_factory, site):
    await make_schema(session, site)
    request = _request(
        ("2025-06-01", {"temperature": 21}),
        ("2025-06-02", {"temperature": 22}),
    )
    service = DataIngestionService(session)

    first = await service.process_upload(site.id, None, request)
    second = await service.process_upload(site.id, None, request)

    assert (first.rows_inserted, first.rows_skipped) == (2, 0)
    assert (second.rows_inserted, second.rows_updated, second.rows_skipped) == (0, 0, 2)
    assert second.success
    assert second.errors == []
    assert [w.field for w in second.warnings] == [DATE_FIELD, DATE_FIELD]
    assert second.warnings[0].message == (
        "Data for 2025-06-01 already exists. Use OverwriteExisting to update."
    )
    assert await _count_rows(session_factory, site.id) == 2


async def test_overwrite_replaces_payload(session, session_factory, site):
    service = DataIngestionService(session)
    await service.process_upload(site.id, None, _request(("2025-06-01", {"temperature": 21})))

    result = await service.process_upload(
        site.id, None, _request(("2025-06-01", {"temperature": 30, "pressure": 2}), overwrite=True)
    )

    assert result.success
    assert (result.rows_inserted, result.rows_updated, result.rows_skipped) == (0, 1, 0)
    upload = await session.get(Upload, result.upload_id)
    assert upload.rows_inserted == 1
    await session.commit()

    async with session_factory() as s:
        stored = (await s.execute(select(DataRow).where(DataRow.site_id == site.id))).scalar_one()
        assert stored.sensor_data == {"temperature": 30, "pressure": 2}


async def test_future_date_rejects_whole_batch(session, session_factory, site):
    await make_schema(session, site)
    request = _request(
        ("2025-06-01", {"temperature": 21}),
        (_future_day().isoformat(), {"temperature": 22}),
        overwrite=True,
    )

    result = await DataIngestionService(session).process_upload(site.id, None, request)

    assert not result.success
    assert len(result.errors) == 1
    assert result.errors[0].row_index == 1
    assert result.errors[0].field == DATE_FIELD
    assert result.rows_inserted == 0
    assert await _count_rows(session_factory, site.id) == 0

    upload = await session.get(Upload, result.upload_id)
    assert upload.validation_status == UploadValidationStatus.INVALID
    assert upload.error_message == "1 validation error(s) found"


async def test_skip_validation_accepts_future_dates(session, session_factory, site):
    await make_schema(session, site)
    request = _request((_future_day().isoformat(), {"humidity": 80}), skip_validation=True)

    result = await DataIngestionService(session).process_upload(site.id, None, request)

    assert result.success
    assert result.rows_inserted == 1
    assert result.warnings == []
    assert await _count_rows(session_factory, site.id) == 1


async def test_missing_site_creates_no_upload(session):
    result = await DataIngestionService(session).process_upload(
        404, None, _request(("2025-06-01", {"temperature": 21}))
    )

    assert not result.success
    assert result.upload_id is None
    assert [e.field for e in result.errors] == ["siteId"]
    assert (await session.execute(select(func.count(Upload.id)))).scalar_one() == 0


async def test_duplicate_dates_within_one_batch(session, session_factory, site):
    request = _request(
        ("2025-06-01T08:00:00", {"temperature": 21}),
        ("2025-06-01T20:00:00", {"temperature": 25}),
    )

    result = await DataIngestionService(session).process_upload(site.id, None, request)

    assert (result.rows_inserted, result.rows_skipped) == (1, 1)
    assert await _count_rows(session_factory, site.id) == 1


async def test_duplicate_dates_within_one_batch_with_overwrite(session, session_factory, site):
    request = _request(
        ("2025-06-01", {"temperature": 21}),
        ("2025-06-01", {"temperature": 25}),
        overwrite=True,
    )

    result = await DataIngestionService(session).process_upload(site.id, None, request)

    assert (result.rows_inserted, result.rows_updated) == (1, 1)
    async with session_factory() as s:
        stored = (await s.execute(select(DataRow).where(DataRow.site_id == site.id))).scalar_one()
        assert stored.sensor_data == {"temperature": 25}
        assert stored.date == date(2025, 6, 1)


async def test_rows_are_tagged_with_current_schema(session, session_factory, site):
    v1 = await make_schema(session, site)
    service = DataIngestionService(session)
    await service.process_upload(site.id, None, _request(("2025-06-01", {"temperature": 21})))

    v2 = await create_schema_version(session, site, "{}", 2.0, "relax schema", None)
    await session.commit()
    await service.process_upload(
        site.id, None, _request(("2025-06-01", {"temperature": 22}), overwrite=True)
    )

    async with session_factory() as s:
        stored = (await s.execute(select(DataRow).where(DataRow.site_id == site.id))).scalar_one()
        assert stored.schema_version_id == v2.id
        assert stored.schema_version_id != v1.id


async def test_concurrent_uploads_for_same_date_store_one_row(session_factory, site):
    locks = defaultdict(asyncio.Lock)
    request = _request(("2025-06-01", {"temperature": 21}))

    async def upload():
        async with session_factory() as s:
            return await DataIngestionService(s, site_locks=locks).process_upload(
                site.id, None, request
            )

    results = await asyncio.gather(upload(), upload())

    assert sorted(r.rows_inserted for r in results) == [0, 1]
    assert sorted(r.rows_skipped for r in results) == [0, 1]
    assert all(r.success for r in results)
    assert await _count_rows(session_factory, site.id) == 1


async def test_concurrent_uploads_in_separate_processes_store_one_row(session_factory, site):
    request = _request(("2025-06-01", {"temperature": 21}))

    async def upload():
        # A private lock table per call, as if each ran in its own worker
        async with session_factory() as s:
            return await DataIngestionService(
                s, site_locks=defaultdict(asyncio.Lock)
            ).process_upload(site.id, None, request)

    results = await asyncio.gather(upload(), upload())

    assert sum(r.rows_inserted for r in results) == 1
    assert await _count_rows(session_factory, site.id) == 1


async def _cancel_upload_while_blocked(session_factory, site, started, locks):
    request = _request(
        ("2025-06-01", {"temperature": 21}),
        ("2025-06-02", {"temperature": 22}),
    )

    async def upload():
        async with session_factory() as s:
            return await DataIngestionService(s, site_locks=locks).process_upload(
                site.id, None, request
            )

    task = asyncio.create_task(upload())
    await asyncio.wait_for(started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    async with session_factory() as s:
        uploads = (await s.execute(select(Upload).where(Upload.site_id == site.id))).scalars().all()
    return uploads


async def test_cancel_during_validation_keeps_pending_upload(session_factory, site, monkeypatch):
    started = asyncio.Event()

    async def blocking_validate(self, site, rows, *args, **kwargs):
        started.set()
        await asyncio.Event().wait()

    monkeypatch.setattr(SchemaValidator, "validate", blocking_validate)
    locks = defaultdict(asyncio.Lock)

    uploads = await _cancel_upload_while_blocked(session_factory, site, started, locks)

    assert len(uploads) == 1
    assert uploads[0].validation_status == UploadValidationStatus.PENDING
    assert uploads[0].rows_inserted == 0
    assert await _count_rows(session_factory, site.id) == 0


async def test_cancel_during_reconciliation_discards_unsaved_rows(session_factory, site, monkeypatch):
    started = asyncio.Event()
    reconcile = DataIngestionService._reconcile_rows

    async def reconcile_then_block(self, *args, **kwargs):
        # Rows are flushed but not yet committed when the task is cancelled.
        await reconcile(self, *args, **kwargs)
        started.set()
        await asyncio.Event().wait()

    monkeypatch.setattr(DataIngestionService, "_reconcile_rows", reconcile_then_block)
    locks = defaultdict(asyncio.Lock)

    uploads = await _cancel_upload_while_blocked(session_factory, site, started, locks)

    assert len(uploads) == 1
    assert uploads[0].validation_status == UploadValidationStatus.PENDING
    assert await _count_rows(session_factory, site.id) == 0
    assert not locks[site.id].locked()


async def test_auto_inference_with_active_model(session, site):
    user = await make_user(session, "operator@example.com")
    model = await make_model(session, site)
    site.auto_inference_enabled = True
    await session.commit()

    result = await DataIngestionService(session).process_upload(
        site.id, user.id, _request(("2025-06-01", {"temperature": 21}))
    )

    assert result.success
    assert result.inference_triggered
    assert result.inference_request_id is not None

    inference = await session.get(InferenceRequest, result.inference_request_id)
    assert inference.status == InferenceRequestStatus.PENDING
    assert inference.user_id == user.id
    assert inference.input_payload == {"modelVersionId": model.id}


async def test_auto_inference_without_model_still_succeeds(session, site):
    site.auto_inference_enabled = True
    await session.commit()

    result = await DataIngestionService(session).process_upload(
        site.id, None, _request(("2025-06-01", {"temperature": 21}))
    )

    assert result.success
    assert not result.inference_triggered
    assert result.inference_request_id is None


async def test_rejected_upload_does_not_trigger_inference(session, site):
    await make_schema(session, site)
    await make_model(session, site)
    site.auto_inference_enabled = True
    await session.commit()

    result = await DataIngestionService(session).process_upload(
        site.id, None, _request(("2025-06-01", {"pressure": 1}))
    )

    assert not result.success
    assert not result.inference_triggered
    count = await session.execute(select(func.count(InferenceRequest.id)))
    assert count.scalar_one() == 0
