from datetime import date, datetime, timezone

import pytest

from mailbyebye.errors import QuotaOrPermissionError
from mailbyebye.filters import DateFilter
from mailbyebye.vault_backend import (
    BulkSearchBackend, BulkSearchJob, JobStatus, job_name, vault_query,
)

from fakes import FakeGmail, FakeVault, completed_export, http_error

CUTOFF = DateFilter.before(date(2022, 1, 1))
NOW = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)


def started(audit, vault, gmail=None):
    backend = BulkSearchBackend(vault, gmail or FakeGmail(), audit)
    return backend, backend.create_and_run("user@example.com", CUTOFF, now=NOW)


def test_job_name_is_timestamped():
    assert job_name("user@example.com", NOW) == "mailbyebye-user@example.com-20240506T070809Z"


def test_vault_query_cutoff_has_no_start():
    query = vault_query("user@example.com", CUTOFF)
    assert query["accountInfo"] == {"emails": ["user@example.com"]}
    assert query["corpus"] == "MAIL"
    assert query["endTime"] == "2022-01-01T00:00:00Z"
    assert "startTime" not in query


def test_vault_query_range():
    query = vault_query("a@example.com", DateFilter.between(date(2023, 1, 1), date(2023, 12, 31)))
    assert query["startTime"] == "2023-01-01T00:00:00Z"
    assert query["endTime"] == "2024-01-01T00:00:00Z"


def test_create_and_run(audit):
    vault = FakeVault()
    backend, job = started(audit, vault)
    assert job.name == "mailbyebye-user@example.com-20240506T070809Z"
    assert (job.matter_id, job.export_id) == ("matter-1", "export-1")
    assert job.status == JobStatus.RUNNING
    assert vault.export_bodies[0]["query"]["accountInfo"]["emails"] == ["user@example.com"]


def test_failed_start_discards_the_matter(audit):
    vault = FakeVault()
    vault.fail["exports.create"] = http_error(403, "forbidden")
    backend = BulkSearchBackend(vault, FakeGmail(), audit)
    with pytest.raises(QuotaOrPermissionError):
        backend.create_and_run("user@example.com", CUTOFF)
    assert vault.calls[-2:] == ["matters.close", "matters.delete"]


def test_poll_waits_for_completion(audit, sleeps):
    vault = FakeVault(export_states=[
        {"id": "export-1", "status": "EXPORT_STATUS_UNSPECIFIED"},
        {"id": "export-1", "status": "IN_PROGRESS"},
        completed_export(42, "2048"),
    ])
    backend, job = started(audit, vault)
    backend.poll_until_done(job, 10)
    assert job.status == JobStatus.COMPLETED
    assert job.item_count == 42
    assert job.total_size_bytes == 2048
    assert sleeps == [30, 30]


def test_poll_keeps_going_through_transient_errors(audit, sleeps):
    vault = FakeVault(export_states=[completed_export(1)])
    backend, job = started(audit, vault)
    vault.fail["exports.get"] = http_error(503, "backendError")
    backend.poll_until_done(job, 1)
    assert job.status == JobStatus.RUNNING
    assert vault.calls.count("exports.get") == 3


def test_poll_raises_on_hard_errors(audit, sleeps):
    vault = FakeVault()
    backend, job = started(audit, vault)
    vault.fail["exports.get"] = http_error(403, "forbidden")
    with pytest.raises(QuotaOrPermissionError):
        backend.poll_until_done(job, 10)


def test_unreadable_size_is_reported(audit, sleeps, caplog):
    vault = FakeVault(export_states=[completed_export(2, "lots")])
    backend, job = started(audit, vault)
    backend.poll_until_done(job, 10)
    assert job.total_size_bytes is None
    assert "unreadable size" in caplog.text


def test_purge_needs_a_completed_job(audit):
    backend = BulkSearchBackend(FakeVault(), FakeGmail(), audit)
    with pytest.raises(ValueError):
        backend.purge(BulkSearchJob("job", "before:2022/01/01", "user@example.com"))


def test_purge_never_exceeds_the_search_count(audit, sleeps):
    gmail = FakeGmail(ids=["a", "b", "c", "d", "e"])
    vault = FakeVault(export_states=[completed_export(3)])
    backend, job = started(audit, vault, gmail)
    backend.poll_until_done(job, 10)
    assert backend.purge(job) == 3
    assert gmail.batch_deletes == [["a", "b", "c"]]
    assert gmail.ids == ["d", "e"]


def test_discard_is_idempotent(audit):
    vault = FakeVault()
    backend, job = started(audit, vault)
    assert backend.discard(job) is True
    calls = len(vault.calls)
    assert backend.discard(job) is True
    assert len(vault.calls) == calls


def test_discard_failure_names_the_matter(audit, caplog):
    vault = FakeVault()
    backend, job = started(audit, vault)
    vault.fail["matters.close"] = http_error(500, "backendError")
    assert backend.discard(job) is False
    assert job.discarded is False
    assert "matter-1" in caplog.text
    assert "matters.delete" not in vault.calls
