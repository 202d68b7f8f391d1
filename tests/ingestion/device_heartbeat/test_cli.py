from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from click.testing import CliRunner
from sqlalchemy.exc import OperationalError

from ingestion.device_heartbeat import main
from ingestion.device_heartbeat.core.models import HeartbeatRecord
from ingestion.device_heartbeat.core.parquet_encoder import encode_parquet
from ingestion.device_heartbeat.core.record_store import RecordStore
from ingestion.device_heartbeat.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def db_path(tmp_path, make_heartbeat) -> str:
    path = tmp_path / "heartbeats.db"
    store = RecordStore(path)
    store.append(make_heartbeat(1, "2024-05-01T09:10:00Z"))
    store.append(make_heartbeat(2, "2024-05-01T10:02:00Z"))
    store.close()
    return str(path)


def test_stats_reports_buffer_content(runner, db_path):
    result = runner.invoke(cli, ["stats", "--db-path", db_path])

    assert result.exit_code == 0, result.output
    assert "Records:         2" in result.output
    assert "2024-05-01T09:10:00+00:00" in result.output


def test_inspect_local_file(runner, tmp_path):
    path = tmp_path / "group.parquet"
    path.write_bytes(
        encode_parquet(
            [
                HeartbeatRecord(
                    id=1, endpoint_id=424242, client_time=datetime(2024, 5, 1, 9, tzinfo=UTC)
                )
            ]
        )
    )

    result = runner.invoke(cli, ["inspect", str(path)])

    assert result.exit_code == 0, result.output
    assert "424242" in result.output


def test_inspect_missing_file(runner, tmp_path):
    result = runner.invoke(cli, ["inspect", str(tmp_path / "missing.parquet")])

    assert result.exit_code == 1
    assert "No file found" in result.output


def test_run_requires_a_queue(runner, monkeypatch, tmp_path):
    monkeypatch.delenv("HEARTBEAT_SQS_QUEUE_URL", raising=False)

    result = runner.invoke(cli, ["run", "--db-path", str(tmp_path / "hb.db")])

    assert result.exit_code == 2
    assert "No queue configured" in result.output


def test_run_rejects_invalid_interval(runner):
    result = runner.invoke(cli, ["run", "--queue-url", "https://q", "--flush-interval", "0"])

    assert result.exit_code == 2


def test_flush_uploads_and_empties_buffer(runner, db_path, monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "heartbeats")
    monkeypatch.delenv("S3_ENDPOINT", raising=False)
    monkeypatch.delenv("HEARTBEAT_S3_BASE_PATH", raising=False)
    s3 = MagicMock()
    s3.bucket = "heartbeats"
    s3.upload_file = AsyncMock(return_value=None)
    s3.close = AsyncMock()

    with patch.object(main, "AsyncS3", return_value=s3):
        result = runner.invoke(cli, ["flush", "--db-path", db_path])

    assert result.exit_code == 0, result.output
    assert "2 uploaded" in result.output
    assert s3.upload_file.await_count == 2
    store = RecordStore(db_path)
    try:
        assert store.count() == 0
    finally:
        store.close()


def test_flush_exits_non_zero_when_a_group_fails(runner, db_path, monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "heartbeats")
    monkeypatch.delenv("S3_ENDPOINT", raising=False)
    s3 = MagicMock()
    s3.bucket = "heartbeats"
    s3.upload_file = AsyncMock(
        side_effect=[
            None,
            ClientError({"Error": {"Code": "SlowDown", "Message": "x"}}, "PutObject"),
        ]
    )
    s3.close = AsyncMock()

    with patch.object(main, "AsyncS3", return_value=s3):
        result = runner.invoke(cli, ["flush", "--db-path", db_path])

    assert result.exit_code == 1
    assert "1 failed" in result.output


def test_flush_exits_non_zero_when_buffer_is_unreadable(runner, db_path, monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "heartbeats")
    monkeypatch.delenv("S3_ENDPOINT", raising=False)
    s3 = MagicMock()
    s3.bucket = "heartbeats"
    s3.upload_file = AsyncMock(return_value=None)
    s3.close = AsyncMock()
    locked = OperationalError("SELECT", {}, Exception("database is locked"))

    with (
        patch.object(main, "AsyncS3", return_value=s3),
        patch.object(RecordStore, "select_before", side_effect=locked),
    ):
        result = runner.invoke(cli, ["flush", "--db-path", db_path])

    assert result.exit_code == 1
    assert "failed" in result.output
    s3.upload_file.assert_not_awaited()
