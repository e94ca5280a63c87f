"""
Bulk-search backend: a Google Vault search job per mailbox, then a purge.

The search runs on Google's side as a Vault export inside a throwaway
matter; we only watch it. Once it completes, the matching messages are
hard-deleted through Gmail's batchDelete, and the matter is thrown away.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from mailbyebye import remote
from mailbyebye.config import POLL_INTERVAL_SECONDS, PURGE_CHUNK_LIMIT
from mailbyebye.errors import TransientNetworkError
from mailbyebye.filters import gmail_query, vault_time_bounds
from mailbyebye.sizes import human_size, parse_size, unparseable


class JobStatus(Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


VAULT_STATUSES = {
    "EXPORT_STATUS_UNSPECIFIED": JobStatus.PENDING,
    "IN_PROGRESS": JobStatus.RUNNING,
    "COMPLETED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
}

FINISHED = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class BulkSearchJob:
    name: str
    query: str
    mailbox: str
    matter_id: str = None
    export_id: str = None
    status: JobStatus = JobStatus.PENDING
    item_count: int = 0
    total_size: object = field(default_factory=lambda: unparseable(None))
    purged: int = 0
    discarded: bool = False

    @property
    def total_size_bytes(self):
        return self.total_size.bytes


def job_name(mailbox, now=None):
    """Unique per run: mailbox plus a UTC timestamp to the second."""
    now = now or datetime.now(timezone.utc)
    return f"mailbyebye-{mailbox}-{now.strftime('%Y%m%dT%H%M%SZ')}"


def vault_query(mailbox, date_filter):
    start, end = vault_time_bounds(date_filter)
    query = {
        "corpus": "MAIL",
        "dataScope": "ALL_DATA",
        "searchMethod": "ACCOUNT",
        "accountInfo": {"emails": [mailbox]},
        "terms": gmail_query(date_filter),
        "endTime": end,
        "timeZone": "Etc/GMT",
    }
    if start:
        query["startTime"] = start
    return query


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class BulkSearchBackend:
    """Vault search + Gmail purge adapter for one mailbox."""

    kind = "bulk-search"

    def __init__(self, vault, gmail, audit):
        self.vault = vault
        self.gmail = gmail
        self.audit = audit

    def create_and_run(self, mailbox, date_filter, now=None):
        """Create the job and start the search. Returns a BulkSearchJob."""
        job = BulkSearchJob(job_name(mailbox, now), gmail_query(date_filter), mailbox)

        try:
            matter = self.vault.matters().create(body={
                "name": job.name,
                "description": f"MailByeBye purge search for {mailbox}",
            }).execute()
        except remote.CALL_ERRORS as e:
            self.audit.error("Could not create search job %s: %s", job.name, remote.describe(e))
            raise remote.classify(e, "creating the search job")
        job.matter_id = matter['matterId']
        self.audit.info("Created search job %s (matter %s)", job.name, job.matter_id)

        try:
            export = self.vault.matters().exports().create(
                matterId=job.matter_id,
                body={
                    "name": job.name,
                    "query": vault_query(mailbox, date_filter),
                    "exportOptions": {"mailOptions": {"exportFormat": "MBOX"}},
                },
            ).execute()
        except remote.CALL_ERRORS as e:
            self.audit.error("Could not start search %s: %s", job.name, remote.describe(e))
            self.discard(job)
            raise remote.classify(e, "starting the search")

        job.export_id = export['id']
        self._apply(job, export)
        self.audit.info("Started search %s: %r", job.name, job.query)
        return job

    def _apply(self, job, export):
        job.status = VAULT_STATUSES.get(export.get('status'), JobStatus.PENDING)
        stats = export.get('stats') or {}
        job.item_count = _as_int(stats.get('totalArtifactCount'))
        job.total_size = parse_size(stats.get('sizeInBytes'))

    def refresh(self, job):
        export = self.vault.matters().exports().get(
            matterId=job.matter_id, exportId=job.export_id
        ).execute()
        self._apply(job, export)
        return job

    def poll_until_done(self, job, max_wait_minutes):
        """
        Check the search every 30 seconds until it finishes or time runs out.

        Never raises on timeout; the job comes back in whatever state was
        last seen and the caller decides what that means.
        """
        deadline = time.monotonic() + max_wait_minutes * 60
        while True:
            try:
                self.refresh(job)
                self.audit.info(
                    "Search %s: %s, %s item(s)", job.name, job.status.value, f"{job.item_count:,}"
                )
            except remote.CALL_ERRORS as e:
                err = remote.classify(e, "checking search status")
                if not isinstance(err, TransientNetworkError):
                    self.audit.error("Status check for %s failed: %s", job.name, err)
                    raise err
                self.audit.warning("Status check for %s failed, will retry: %s", job.name, err)

            if job.status in FINISHED:
                break
            if time.monotonic() >= deadline:
                self.audit.warning(
                    "Search %s still %s after %d minute(s), giving up waiting",
                    job.name, job.status.value, max_wait_minutes,
                )
                break
            time.sleep(POLL_INTERVAL_SECONDS)

        if job.status == JobStatus.COMPLETED and not job.total_size.parsed:
            self.audit.warning("Search %s reported an unreadable size: %r", job.name, job.total_size.raw)
        elif job.status == JobStatus.COMPLETED:
            self.audit.info("Search %s matched %s", job.name, human_size(job.total_size_bytes))
        return job

    def _matching_ids(self, job, limit):
        ids = []
        page_token = None
        while len(ids) < limit:
            result = self.gmail.users().messages().list(
                userId='me', q=job.query, includeSpamTrash=True,
                maxResults=500, pageToken=page_token, fields="messages/id,nextPageToken",
            ).execute()
            ids.extend(m['id'] for m in result.get('messages', []))
            page_token = result.get('nextPageToken')
            if not page_token:
                break
        if len(ids) > limit:
            self.audit.warning(
                "Gmail matched %s message(s) but the search counted %s; purging %s",
                f"{len(ids):,}", f"{limit:,}", f"{limit:,}",
            )
        return ids[:limit]

    def purge(self, job):
        """
        Hard-delete what the job matched. Irreversible.

        Returns the number of messages handed to Gmail for deletion. Gmail
        finishes removing them on its own schedule.
        """
        if job.status != JobStatus.COMPLETED:
            raise ValueError(f"Search {job.name} is {job.status.value}, not Completed")

        try:
            ids = self._matching_ids(job, job.item_count)
            for i in range(0, len(ids), PURGE_CHUNK_LIMIT):
                chunk = ids[i:i + PURGE_CHUNK_LIMIT]
                self.gmail.users().messages().batchDelete(
                    userId='me', body={'ids': chunk}
                ).execute()
                job.purged += len(chunk)
                self.audit.info(
                    "Purge %s: submitted %s/%s", job.name, f"{job.purged:,}", f"{len(ids):,}"
                )
        except remote.CALL_ERRORS as e:
            self.audit.error(
                "Purge %s stopped after %s message(s): %s", job.name, f"{job.purged:,}", remote.describe(e)
            )
            raise remote.classify(e, "purging")

        self.audit.success("Purge %s submitted for %s message(s)", job.name, f"{job.purged:,}")
        return job.purged

    def discard(self, job):
        """
        Remove the job's export and matter. Safe to call more than once.

        Failures are logged with the matter id for manual cleanup and
        reported through the return value rather than raised.
        """
        if job.discarded or not job.matter_id:
            return True

        matters = self.vault.matters()
        steps = []
        if job.export_id:
            steps.append(("delete export", lambda: matters.exports().delete(
                matterId=job.matter_id, exportId=job.export_id).execute()))
        steps.append(("close matter", lambda: matters.close(
            matterId=job.matter_id, body={}).execute()))
        steps.append(("delete matter", lambda: matters.delete(
            matterId=job.matter_id).execute()))

        clean = True
        for label, step in steps:
            try:
                step()
            except remote.CALL_ERRORS as e:
                clean = False
                self.audit.error(
                    "Discarding %s: could not %s (matter %s): %s",
                    job.name, label, job.matter_id, remote.describe(e),
                )
                break

        job.discarded = clean
        if clean:
            self.audit.info("Discarded search job %s", job.name)
        return clean
