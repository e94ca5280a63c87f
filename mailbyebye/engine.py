"""
Deletion engine.

Drives one target (a folder for the remote-mail backend, a mailbox for
the bulk-search backend) from counting through confirmation to deletion:

    IDLE -> COUNTING -> DONE                       nothing matched
    IDLE -> COUNTING -> REPORTING -> DONE          dry run / check only
    IDLE -> COUNTING -> AWAITING_CONFIRMATION -> DONE            declined
    IDLE -> COUNTING -> AWAITING_CONFIRMATION -> DELETING -> DONE

Remote-mail deletes page by page in batches of at most 20, backing off
on throttling. Bulk-search runs a server-side search, waits for it and
submits one purge; its job is discarded on every way out.
"""
import math
import time
from dataclasses import dataclass
from enum import Enum

from mailbyebye.config import (
    BACKEND_BULK, BACKOFF_BASE_SECONDS, BATCH_PAUSE_SECONDS, DELETE_BATCH_LIMIT, MAX_ATTEMPTS,
)
from mailbyebye.confirm import ConfirmToken
from mailbyebye.errors import (
    QuotaOrPermissionError, RemoteError, ThrottleError, TransientNetworkError,
)
from mailbyebye.gmail_backend import fetch_page_size
from mailbyebye.holds import find_account_holds, remove_account_from_holds
from mailbyebye.sizes import human_size
from mailbyebye.vault_backend import JobStatus

# Errors that end the current target but not the run
TARGET_ERRORS = (TransientNetworkError, QuotaOrPermissionError, RemoteError)


class EngineState(Enum):
    IDLE = "idle"
    COUNTING = "counting"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    REPORTING = "reporting"
    DELETING = "deleting"
    DONE = "done"


@dataclass
class DeletionTally:
    """Running counters for one remote-mail target."""
    deleted: int = 0
    failed: int = 0
    matched: int = 0
    would_delete: int = 0
    aborted: bool = False

    @property
    def processed(self):
        return self.deleted + self.failed


@dataclass
class BulkResult:
    """Outcome of one bulk-search target. item_count is accepted for purge, not confirmed gone."""
    item_count: int = 0
    matched: int = 0
    would_purge: int = 0
    status: JobStatus = None
    incomplete: bool = False
    aborted: bool = False


def partition(ids, size=DELETE_BATCH_LIMIT):
    """Split ids into ordered batches of at most `size`."""
    return [ids[i:i + size] for i in range(0, len(ids), size)]


def backoff_seconds(retry_count):
    return (2 ** retry_count) * BACKOFF_BASE_SECONDS


def max_page_fetches(match_count, page_size):
    """Upper bound on page fetches for one target, in case the server never runs dry."""
    return math.ceil(match_count / fetch_page_size(page_size)) * 2 + 5


class DeletionEngine:
    def __init__(self, ctx, backend):
        self.ctx = ctx
        self.backend = backend
        self.audit = ctx.audit
        self.gate = ctx.gate
        self.state = EngineState.IDLE

    def _to(self, state):
        self.audit.debug("Engine: %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self, date_filter, folder=None, mailbox=None):
        """Process one target with whichever backend was injected."""
        self.state = EngineState.IDLE
        if self.backend.kind == BACKEND_BULK:
            return self.process_mailbox(mailbox, date_filter)
        return self.process_folder(folder, date_filter)

    # ---- remote-mail ----

    def process_folder(self, folder, date_filter):
        """
        Delete everything in `folder` matching the filter.

        Args:
            folder: gmail_backend.Folder, or None for the whole mailbox
            date_filter: filters.DateFilter

        Returns:
            DeletionTally for this folder
        """
        tally = DeletionTally()
        where = folder.name if folder else self.backend.mailbox

        self._to(EngineState.COUNTING)
        try:
            match_count = self.backend.count_matching(folder, date_filter)
        except TARGET_ERRORS as e:
            self.audit.error("Counting %s failed: %s", where, e)
            tally.aborted = True
            self._to(EngineState.DONE)
            return tally
        tally.matched = match_count

        if match_count == 0:
            self.audit.info("%s: nothing matches %s", where, date_filter.describe())
            self._to(EngineState.DONE)
            return tally

        if self.ctx.check_only:
            self._to(EngineState.REPORTING)
            self.audit.info("[CHECK] %s: %s message(s) match %s", where, f"{match_count:,}", date_filter.describe())
            self._to(EngineState.DONE)
            return tally

        if self.ctx.dry_run:
            self._to(EngineState.REPORTING)
            tally.would_delete = match_count
            self.audit.info("[DRY RUN] Would delete %s message(s) from %s", f"{match_count:,}", where)
            self._to(EngineState.DONE)
            return tally

        self._to(EngineState.AWAITING_CONFIRMATION)
        message = (
            f"About to permanently delete {match_count:,} messages "
            f"({date_filter.describe()}) from {where}. This cannot be undone!"
        )
        if not self.gate.confirm(ConfirmToken.YES, message):
            self.audit.info("Skipped %s: deletion not confirmed", where)
            self._to(EngineState.DONE)
            return tally

        self._to(EngineState.DELETING)
        self._delete_loop(folder, date_filter, tally, where)
        self._to(EngineState.DONE)

        level = "SUCCESS" if tally.failed == 0 and not tally.aborted else "WARNING"
        self.audit.append(
            level, "%s: deleted %s, failed %s of %s",
            where, f"{tally.deleted:,}", f"{tally.failed:,}", f"{match_count:,}",
        )
        return tally

    def _fetch_page(self, folder, date_filter, page_token=None):
        """One page of ids; throttled fetches back off like deletes do."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self.backend.fetch_id_page(folder, date_filter, self.ctx.page_size, page_token)
            except ThrottleError as e:
                if attempt == MAX_ATTEMPTS:
                    raise
                wait = backoff_seconds(attempt)
                self.audit.warning("%s; waiting %ds before fetching again", e, wait)
                time.sleep(wait)

    def _delete_loop(self, folder, date_filter, tally, where):
        match_count = tally.matched
        page_limit = max_page_fetches(match_count, self.ctx.page_size)
        pages = 0
        # Messages that failed for good stay on the server and keep matching
        given_up = set()
        page_token = None

        while tally.processed < match_count:
            if pages >= page_limit:
                self.audit.warning(
                    "%s: stopped after %d page fetches with %s of %s processed",
                    where, pages, f"{tally.processed:,}", f"{match_count:,}",
                )
                break

            try:
                ids, next_token = self._fetch_page(folder, date_filter, page_token)
            except TARGET_ERRORS as e:
                self.audit.error("%s: fetching message ids failed, stopping this folder: %s", where, e)
                tally.aborted = True
                break
            pages += 1

            if not ids:
                self.audit.info("%s: no more matching messages", where)
                break

            fresh = [i for i in ids if i not in given_up]
            if not fresh:
                if not next_token:
                    self.audit.info("%s: only undeletable messages left", where)
                    break
                page_token = next_token
                continue

            # Never go past what the operator confirmed
            fresh = fresh[:match_count - tally.processed]

            batches = partition(fresh)
            for batch_num, batch in enumerate(batches, 1):
                succeeded, failed_ids = self.delete_with_retry(batch, batch_num, len(batches))
                tally.deleted += succeeded
                tally.failed += len(failed_ids)
                given_up.update(failed_ids)
                time.sleep(BATCH_PAUSE_SECONDS)

            self.audit.info(
                "Progress %s: %s/%s (%.1f%%), %s failed",
                where, f"{tally.processed:,}", f"{match_count:,}",
                100 * tally.processed / match_count, f"{tally.failed:,}",
            )

    def delete_with_retry(self, batch, batch_num=1, total_batches=1):
        """
        Delete one batch, retrying throttled ids with exponential backoff.

        Only ids that came back throttled are resent. Other failures count
        as failed straight away.

        Returns:
            (succeeded, failed_ids) for the batch
        """
        pending = list(batch)
        succeeded = 0
        failed_ids = []

        for attempt in range(1, MAX_ATTEMPTS + 1):
            outcome = self.backend.delete_batch(pending)
            succeeded += outcome.succeeded
            failed_ids.extend(outcome.failed_ids)

            self.audit.info(
                "Batch %d/%d attempt %d: %d deleted, %d throttled, %d failed",
                batch_num, total_batches, attempt, outcome.succeeded,
                len(outcome.retry_ids), len(outcome.failed_ids),
            )
            if outcome.errors:
                self.audit.warning(
                    "Batch %d/%d: %s", batch_num, total_batches, "; ".join(outcome.errors[:3])
                )

            if outcome.denied:
                self.audit.warning(
                    "Permission or quota refusal on batch %d; if this keeps happening "
                    "try --backend bulk-search", batch_num,
                )

            if not outcome.throttled or not outcome.retry_ids:
                break
            if attempt == MAX_ATTEMPTS:
                self.audit.error(
                    "Batch %d/%d: %d message(s) still throttled after %d attempts, counting them failed",
                    batch_num, total_batches, len(outcome.retry_ids), MAX_ATTEMPTS,
                )
                failed_ids.extend(outcome.retry_ids)
                break

            wait = backoff_seconds(attempt)
            self.audit.warning("Batch %d/%d throttled, waiting %ds", batch_num, total_batches, wait)
            time.sleep(wait)
            pending = outcome.retry_ids

        return succeeded, failed_ids

    # ---- bulk-search ----

    def process_mailbox(self, mailbox, date_filter):
        """
        Search `mailbox` server-side and purge what matched.

        The search job is discarded before returning, whatever happens.
        """
        result = BulkResult()

        self._to(EngineState.COUNTING)
        try:
            job = self.backend.create_and_run(mailbox, date_filter)
        except TARGET_ERRORS as e:
            self.audit.error("Could not start a search for %s: %s", mailbox, e)
            result.aborted = True
            self._to(EngineState.DONE)
            return result

        try:
            self._search_and_purge(job, mailbox, date_filter, result)
        except TARGET_ERRORS as e:
            self.audit.error("%s: bulk purge stopped: %s", mailbox, e)
            result.aborted = True
            result.item_count = job.purged
        finally:
            self.backend.discard(job)
            self._to(EngineState.DONE)
        return result

    def _search_and_purge(self, job, mailbox, date_filter, result):
        self.backend.poll_until_done(job, self.ctx.max_wait_minutes)
        result.status = job.status

        if job.status != JobStatus.COMPLETED:
            self.audit.warning(
                "%s: search ended %s, nothing will be purged", mailbox, job.status.value
            )
            result.incomplete = True
            return

        result.matched = job.item_count
        if job.item_count == 0:
            self.audit.info("%s: nothing matches %s", mailbox, date_filter.describe())
            return

        holds = self._lookup_holds(mailbox)

        if self.ctx.check_only:
            self._to(EngineState.REPORTING)
            self.audit.info(
                "[CHECK] %s: %s item(s), %s match %s", mailbox, f"{job.item_count:,}",
                human_size(job.total_size_bytes), date_filter.describe(),
            )
            return

        if self.ctx.dry_run:
            self._to(EngineState.REPORTING)
            result.would_purge = job.item_count
            self.audit.info("[DRY RUN] Would purge %s item(s) from %s", f"{job.item_count:,}", mailbox)
            return

        self._to(EngineState.AWAITING_CONFIRMATION)
        if holds:
            removable = [h for h in holds if h.removable]
            removed = 0
            if self.ctx.remove_holds and removable and self.gate.confirm(
                ConfirmToken.REMOVE,
                f"Remove {mailbox} from {len(removable)} Vault hold(s) so held mail can be purged?",
            ):
                removed = remove_account_from_holds(self.backend.vault, removable, self.audit)
            if removed < len(holds):
                self.audit.warning(
                    "%s is still under %d Vault hold(s); held messages will survive the purge%s",
                    mailbox, len(holds) - removed,
                    "" if self.ctx.remove_holds else " (see --remove-holds)",
                )

        message = (
            f"About to PURGE {job.item_count:,} messages ({human_size(job.total_size_bytes)}, "
            f"{date_filter.describe()}) from {mailbox}. This is irreversible!"
        )
        if not self.gate.confirm(ConfirmToken.DELETE, message):
            self.audit.info("Skipped %s: purge not confirmed", mailbox)
            return

        self._to(EngineState.DELETING)
        result.item_count = self.backend.purge(job)

    def _lookup_holds(self, mailbox):
        try:
            return find_account_holds(self.backend.vault, mailbox, self.audit)
        except TARGET_ERRORS as e:
            self.audit.warning("Could not check Vault holds for %s: %s", mailbox, e)
            return []
