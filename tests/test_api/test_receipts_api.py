"""
Tests for receipt upload, the worker trigger and inbox stats.
"""

from taxhelper.dependencies import get_extractor
from taxhelper.main import app
from taxhelper.models.enums import ReceiptJobStatus
from taxhelper.receipts.errors import BudgetExceededError, ParsingError, RateLimitedError
from taxhelper.receipts.extraction import ReceiptExtractor
from taxhelper.worker import jobs

JPEG = b"\xff\xd8\xff\xe0 fake jpeg"


class FailingExtractor(ReceiptExtractor):
    def __init__(self, error):
        self.error = error

    @property
    def extractor_name(self) -> str:
        return "failing"

    async def extract(self, data):
        raise self.error


def _jpeg(name="receipt.jpg", content=JPEG, mime="image/jpeg"):
    return {"file": (name, content, mime)}


class TestSyncUpload:

    async def test_extracts_and_stores(self, client, user_headers, receipt_text, storage):
        response = await client.post(
            "/api/v1/receipts/upload",
            files=_jpeg(),
            data={"ocr_text": receipt_text, "type": "sales_tax"},
            headers=user_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["async"] is False
        assert body["original_name"] == "receipt.jpg"
        assert body["size"] == len(JPEG)
        assert body["type"] == "image/jpeg"
        assert body["extracted"]["merchant"] == "Corner Cafe"
        assert body["extracted"]["total"] == 8.37
        assert body["extracted"]["date"] == "2024-03-15"
        assert body["storage_path"].startswith("receipts/user-1/SALES_TAX/2024-03-15 Corner Cafe - Receipt")
        assert body["storage_path"].endswith(".jpg")
        assert await storage.get(body["storage_path"]) == JPEG

    async def test_rate_limited(self, client, user_headers):
        app.dependency_overrides[get_extractor] = lambda: FailingExtractor(
            RateLimitedError(retry_after_seconds=12.2)
        )

        response = await client.post("/api/v1/receipts/upload", files=_jpeg(), headers=user_headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "13"
        assert response.json()["detail"]["code"] == "RATE_LIMITED"

    async def test_rate_limited_default_retry_after(self, client, user_headers):
        app.dependency_overrides[get_extractor] = lambda: FailingExtractor(RateLimitedError())

        response = await client.post("/api/v1/receipts/upload", files=_jpeg(), headers=user_headers)

        assert response.headers["Retry-After"] == "60"

    async def test_budget_exceeded(self, client, user_headers):
        app.dependency_overrides[get_extractor] = lambda: FailingExtractor(
            BudgetExceededError("user-1", 1.0, 1.5)
        )

        response = await client.post("/api/v1/receipts/upload", files=_jpeg(), headers=user_headers)

        assert response.status_code == 402
        assert response.json()["detail"]["code"] == "BUDGET_EXCEEDED"

    async def test_other_extraction_error(self, client, user_headers):
        app.dependency_overrides[get_extractor] = lambda: FailingExtractor(ParsingError("bad json"))

        response = await client.post("/api/v1/receipts/upload", files=_jpeg(), headers=user_headers)

        assert response.status_code == 502
        assert response.json()["detail"] == {"code": "PARSING_ERROR", "error": "bad json"}


class TestAsyncUpload:

    async def test_queues_job(self, client, user_headers, receipt_text, repository, storage, monkeypatch):
        enqueued = []
        monkeypatch.setattr(jobs, "try_enqueue_receipt_processing", lambda limit=None: enqueued.append(limit))

        response = await client.post(
            "/api/v1/receipts/upload?async=1",
            files=_jpeg(),
            data={"ocr_text": receipt_text},
            headers=user_headers,
        )

        assert response.status_code == 202
        body = response.json()
        assert body["async"] is True
        job_id = body["job"]["id"]
        assert body["job"]["status"] == "QUEUED"
        assert body["job"]["poll_url"] == f"/api/v1/receipts/jobs/{job_id}"
        assert enqueued == [None]

        job = await repository.find_by_id(job_id, user_id="user-1")
        assert job.status == ReceiptJobStatus.QUEUED
        assert job.ocr_text == receipt_text
        assert job.attempts == 0
        assert job_id[:8] in job.storage_path
        assert await storage.get(job.storage_path) == JPEG

    async def test_same_day_uploads_get_distinct_paths(self, client, user_headers, repository):
        ids = []
        for _ in range(2):
            response = await client.post(
                "/api/v1/receipts/upload?async=true", files=_jpeg(), headers=user_headers
            )
            ids.append(response.json()["job"]["id"])

        paths = {(await repository.find_by_id(job_id)).storage_path for job_id in ids}
        assert len(paths) == 2

    async def test_queued_job_processed_and_confirmed(self, client, user_headers, receipt_text):
        upload = await client.post(
            "/api/v1/receipts/upload?async=1",
            files=_jpeg(),
            data={"ocr_text": receipt_text},
            headers=user_headers,
        )
        job_id = upload.json()["job"]["id"]

        run = await client.post("/api/v1/receipts/process", headers=user_headers)
        assert run.status_code == 200
        assert run.json()["processed"] == 1
        assert run.json()["succeeded"] == 1

        job = (await client.get(f"/api/v1/receipts/jobs/{job_id}", headers=user_headers)).json()
        assert job["status"] == "COMPLETED"
        assert job["merchant"] == "Corner Cafe"

        confirm = await client.post(f"/api/v1/receipts/jobs/{job_id}/confirm", headers=user_headers)
        assert confirm.status_code == 200
        transaction_id = confirm.json()["transaction_id"]

        listing = (await client.get("/api/v1/transactions", headers=user_headers)).json()
        assert [t["id"] for t in listing["transactions"]] == [transaction_id]


class TestUploadValidation:

    async def test_requires_user(self, client):
        response = await client.post("/api/v1/receipts/upload", files=_jpeg())
        assert response.status_code == 401

    async def test_unsupported_type(self, client, user_headers):
        response = await client.post(
            "/api/v1/receipts/upload", files=_jpeg("notes.txt", b"hello", "text/plain"), headers=user_headers
        )
        assert response.status_code == 415

    async def test_too_large(self, client, user_headers, monkeypatch):
        monkeypatch.setattr("taxhelper.api.receipts.settings.MAX_UPLOAD_SIZE_MB", 0)

        response = await client.post("/api/v1/receipts/upload", files=_jpeg(), headers=user_headers)

        assert response.status_code == 413

    async def test_empty_file(self, client, user_headers):
        response = await client.post(
            "/api/v1/receipts/upload", files=_jpeg(content=b""), headers=user_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_invalid_transaction_type(self, client, user_headers):
        response = await client.post(
            "/api/v1/receipts/upload", files=_jpeg(), data={"type": "gift"}, headers=user_headers
        )

        assert response.status_code == 400
        assert "gift" in response.json()["detail"]["error"]


class TestProcessEndpoint:

    async def test_requires_caller(self, client):
        response = await client.post("/api/v1/receipts/process")
        assert response.status_code == 401

    async def test_cron_secret(self, client, monkeypatch):
        monkeypatch.setattr("taxhelper.dependencies.settings.CRON_SECRET", "s3cret")

        response = await client.post(
            "/api/v1/receipts/process", headers={"Authorization": "Bearer s3cret"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "processed": 0, "succeeded": 0, "failed": 0, "recovered": 0, "results": [],
        }

    async def test_wrong_cron_secret(self, client, monkeypatch):
        monkeypatch.setattr("taxhelper.dependencies.settings.CRON_SECRET", "s3cret")

        response = await client.post(
            "/api/v1/receipts/process", headers={"Authorization": "Bearer nope"}
        )

        assert response.status_code == 401

    async def test_limit_clamped(self, client, user_headers, job_factory, storage):
        for _ in range(3):
            job = await job_factory(status=ReceiptJobStatus.QUEUED, ocr_text=None)
        await storage.store(job.storage_path, JPEG)

        response = await client.post("/api/v1/receipts/process?limit=0", headers=user_headers)

        assert response.json()["processed"] == 1


class TestInboxStats:

    async def test_counts(self, client, user_headers, job_factory):
        await job_factory(status=ReceiptJobStatus.QUEUED)
        await job_factory(status=ReceiptJobStatus.NEEDS_REVIEW)
        await job_factory(status=ReceiptJobStatus.FAILED)
        await job_factory(user_id="user-2", status=ReceiptJobStatus.QUEUED)

        response = await client.get("/api/v1/receipts/stats", headers=user_headers)

        body = response.json()
        assert body["queued"] == 1
        assert body["needs_review"] == 1
        assert body["failed"] == 1
        assert body["total"] == 3
