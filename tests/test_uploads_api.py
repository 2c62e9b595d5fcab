"""Tests for the upload, progress, batch and multi-entry endpoints."""
import io

import pytest
import redis.asyncio as aioredis
from openpyxl import Workbook

from wms.config import get_settings
from wms.models import InboundEntry, MasterData
from wms.schemas.upload import JobStatus
from wms.services.ingestion import JobContext, new_progress
from wms.services.pipelines import get_pipeline
from wms.services.progress import get_progress_store, utcnow


def csv_file(text, filename="goods.csv"):
    return {"file": (filename, text.encode("utf-8"), "text/csv")}


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_upload_csv(client, warehouses, db):
    response = client.post(
        "/api/inbound/upload",
        files=csv_file("WSN,BRAND\nA1,Acme\nA2,Globex\n,Initech\n"),
        data={"warehouse_id": "1", "created_by": "7", "created_user_name": "asha"},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "processing"
    assert body["file_type"] == "csv"
    assert body["batch_id"].startswith("BULK_")

    # inline backend: the background task ran before the response was returned
    progress = client.get(f"/api/inbound/upload/progress/{body['job_id']}")
    assert progress.status_code == 200
    data = progress.json()
    assert data["status"] == "completed"
    assert data["success_count"] == 2
    assert data["skipped_count"] == 1
    assert data["filename"] == "goods.csv"
    assert db.query(InboundEntry).filter(InboundEntry.wsn == "A1").one().created_by == 7


def test_upload_xlsx(client, warehouses):
    workbook = Workbook()
    workbook.active.append(["WSN", "PICKING_DATE", "CUSTOMER_NAME"])
    workbook.active.append(["P1", "2024-05-01", "Acme Retail"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    response = client.post(
        "/api/picking/upload",
        files={"file": ("picks.xlsx", buffer.getvalue(), "application/octet-stream")},
        data={"warehouse_id": "2"},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["batch_id"].startswith("PICK_BULK_")
    progress = client.get(f"/api/picking/upload/progress/{body['job_id']}").json()
    assert progress["status"] == "completed"
    assert progress["success_count"] == 1


def test_master_data_needs_no_warehouse(client, db):
    response = client.post("/api/master-data/upload", files=csv_file("WSN,FSN\nM1,F1\n"))

    assert response.status_code == 202
    assert db.query(MasterData).count() == 1


def test_upload_without_file(client, warehouses):
    response = client.post("/api/inbound/upload", data={"warehouse_id": "1"})

    assert response.status_code == 400
    assert response.json()["detail"] == "No file uploaded"


def test_upload_rejects_unsupported_type(client, warehouses):
    response = client.post(
        "/api/inbound/upload",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        data={"warehouse_id": "1"},
    )
    assert response.status_code == 400


def test_upload_rejects_legacy_xls(client, warehouses):
    response = client.post(
        "/api/inbound/upload",
        files={"file": ("old.xls", b"\xd0\xcf\x11\xe0", "application/vnd.ms-excel")},
        data={"warehouse_id": "1"},
    )
    assert response.status_code == 400
    assert ".xls" in response.json()["detail"]


def test_upload_rejects_empty_file(client, warehouses):
    response = client.post(
        "/api/inbound/upload", files=csv_file("WSN,BRAND\n"), data={"warehouse_id": "1"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "File is empty"
    assert client.get("/api/inbound/upload/active").json() == []


def test_upload_requires_warehouse(client, warehouses):
    response = client.post("/api/inbound/upload", files=csv_file("WSN\nA1\n"))
    assert response.status_code == 400

    response = client.post(
        "/api/inbound/upload", files=csv_file("WSN\nA1\n"), data={"warehouse_id": "99"}
    )
    assert response.status_code == 400
    assert "not found" in response.json()["detail"]


def test_upload_too_large(client, warehouses):
    small = get_settings().model_copy(update={"max_upload_size_mb": 0})
    client.app.dependency_overrides[get_settings] = lambda: small

    response = client.post(
        "/api/inbound/upload", files=csv_file("WSN\nA1\n"), data={"warehouse_id": "1"}
    )

    assert response.status_code == 413


def test_progress_unknown_job(client):
    assert client.get("/api/inbound/upload/progress/missing").status_code == 404


def test_progress_is_scoped_to_pipeline(client, warehouses):
    body = client.post(
        "/api/inbound/upload", files=csv_file("WSN\nA1\n"), data={"warehouse_id": "1"}
    ).json()

    assert client.get(f"/api/qc/upload/progress/{body['job_id']}").status_code == 404


def create_processing_job(job_id, pipeline_name):
    store = get_progress_store()
    pipeline = get_pipeline(pipeline_name)
    store.create(
        new_progress(job_id, pipeline, "BULK_1_X", JobContext(warehouse_id=1), "big.csv", "csv", 10)
    )


def test_active_uploads(client):
    create_processing_job("running-inbound", "inbound")
    create_processing_job("running-qc", "qc")

    active = client.get("/api/inbound/upload/active").json()

    assert [job["job_id"] for job in active] == ["running-inbound"]


def test_cancel_upload(client):
    create_processing_job("to-cancel", "inbound")

    response = client.delete("/api/inbound/upload/cancel/to-cancel")

    assert response.status_code == 200
    assert response.json()["job_id"] == "to-cancel"
    assert client.get("/api/inbound/upload/progress/to-cancel").status_code == 404
    assert client.get("/api/inbound/upload/active").json() == []
    assert client.delete("/api/inbound/upload/cancel/to-cancel").status_code == 404


def test_stream_of_finished_job_sends_one_event(client, warehouses):
    body = client.post(
        "/api/inbound/upload", files=csv_file("WSN\nA1\n"), data={"warehouse_id": "1"}
    ).json()

    response = client.get(f"/api/inbound/upload/progress/{body['job_id']}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [line for line in response.text.splitlines() if line.startswith("data: ")]
    assert len(events) == 1
    assert '"status":"completed"' in events[0]


class QuietPubSub:
    """Subscription on which nothing is ever published; hooks change the job meanwhile."""

    def __init__(self, on_subscribe=None, on_poll=None):
        self.on_subscribe = on_subscribe
        self.on_poll = on_poll
        self.polls = 0
        self.closed = False

    async def subscribe(self, *channels):
        if self.on_subscribe:
            self.on_subscribe()

    async def unsubscribe(self, *channels):
        pass

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        self.polls += 1
        assert self.polls < 20, "stream kept waiting after the job ended"
        if self.on_poll:
            self.on_poll()
        return None

    async def aclose(self):
        self.closed = True


class QuietRedis:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub

    async def aclose(self):
        pass


@pytest.fixture
def quiet_redis(monkeypatch):
    """Route the SSE endpoint's Redis connection to a QuietPubSub."""

    def install(**hooks):
        pubsub = QuietPubSub(**hooks)
        monkeypatch.setattr(aioredis.Redis, "from_url", lambda url, **kwargs: QuietRedis(pubsub))
        return pubsub

    return install


def complete_job(job_id):
    def mark_completed(progress):
        progress.status = JobStatus.COMPLETED
        progress.finished_at = utcnow()

    get_progress_store().update(job_id, mark_completed)


def stream_events(client, job_id):
    response = client.get(f"/api/inbound/upload/progress/{job_id}/stream")
    assert response.status_code == 200
    return [line for line in response.text.splitlines() if line.startswith("data: ")]


def test_stream_ends_when_job_completes_unheard(client, quiet_redis):
    create_processing_job("open-job", "inbound")
    pubsub = quiet_redis(on_poll=lambda: complete_job("open-job"))

    events = stream_events(client, "open-job")

    assert len(events) == 2
    assert '"status":"processing"' in events[0]
    assert '"status":"completed"' in events[1]
    assert pubsub.closed


def test_stream_ends_when_job_completes_before_subscription(client, quiet_redis):
    create_processing_job("fast-job", "inbound")
    pubsub = quiet_redis(on_subscribe=lambda: complete_job("fast-job"))

    events = stream_events(client, "fast-job")

    assert len(events) == 2
    assert '"status":"completed"' in events[1]
    assert pubsub.polls == 0


def test_stream_ends_when_job_is_cancelled(client, quiet_redis):
    create_processing_job("dropped-job", "inbound")
    quiet_redis(on_poll=lambda: get_progress_store().delete("dropped-job"))

    events = stream_events(client, "dropped-job")

    assert '"status": "cancelled"' in events[-1]


def test_list_and_delete_batches(client, warehouses, db):
    first = client.post(
        "/api/inbound/upload", files=csv_file("WSN\nA1\nA2\n"), data={"warehouse_id": "1"}
    ).json()
    client.post(
        "/api/inbound/upload", files=csv_file("WSN\nB1\n"), data={"warehouse_id": "2"}
    )

    batches = client.get("/api/inbound/batches").json()
    assert {batch["batch_id"]: batch["count"] for batch in batches}[first["batch_id"]] == 2
    assert len(batches) == 2

    only_first = client.get("/api/inbound/batches", params={"warehouse_id": 1}).json()
    assert [batch["batch_id"] for batch in only_first] == [first["batch_id"]]

    response = client.delete(f"/api/inbound/batches/{first['batch_id']}")
    assert response.status_code == 200
    assert response.json()["count"] == 2
    assert {row.wsn for row in db.query(InboundEntry)} == {"B1"}


def test_multi_entry(client, warehouses, db):
    db.add(InboundEntry(wsn="OTHER", warehouse_id=2))
    db.add(InboundEntry(wsn="MINE", warehouse_id=1))
    db.commit()

    response = client.post(
        "/api/inbound/multi",
        json={
            "warehouse_id": 1,
            "created_user_name": "asha",
            "entries": [
                {"wsn": "N1", "rack_no": "R-01"},
                {"WSN": "N1"},
                {"wsn": ""},
                {"wsn": "OTHER"},
                {"wsn": "MINE"},
            ],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success_count"] == 1
    assert body["total_count"] == 5
    assert [result["status"] for result in body["results"]] == [
        "SUCCESS",
        "DUPLICATE_IN_BATCH",
        "SKIPPED",
        "CROSS_WAREHOUSE_ERROR",
        "DUPLICATE",
    ]
    assert body["results"][1]["highlight"] is True
    row = db.query(InboundEntry).filter(InboundEntry.wsn == "N1").one()
    assert row.batch_id is None
    assert row.rack_no == "R-01"


def test_multi_entry_unknown_warehouse(client, warehouses):
    response = client.post(
        "/api/inbound/multi", json={"warehouse_id": 42, "entries": [{"wsn": "A"}]}
    )
    assert response.status_code == 400
