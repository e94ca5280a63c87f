"""
Remote-mail backend: the Gmail API, one message at a time.

Counts and lists ids with a date query, deletes in small HTTP batches and
reports what happened to every id in the batch.
"""
from dataclasses import dataclass, field

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from mailbyebye import remote
from mailbyebye.config import DELETE_BATCH_LIMIT, FETCH_PAGE_LIMIT, FETCH_PAGE_MULTIPLIER
from mailbyebye.errors import AuthError
from mailbyebye.filters import gmail_query

# Labels whose messages Gmail hides unless asked
SPAM_TRASH = ("SPAM", "TRASH")

# System labels that are views over other folders, skipped by --all-folders
VIRTUAL_LABELS = ("UNREAD", "STARRED", "IMPORTANT", "CHAT", "DRAFT")

# Failures of the estimate call that the paging fallback can still get past
COUNT_FALLBACK_ERRORS = (HttpError, ValueError) + remote.NETWORK_ERRORS


@dataclass
class Folder:
    id: str
    name: str
    type: str = "user"


@dataclass
class BatchOutcome:
    """What one DeleteBatch call did."""
    succeeded: int = 0
    failed: int = 0
    throttled: bool = False
    denied: bool = False
    retry_ids: list = field(default_factory=list)  # Ids that came back throttled
    failed_ids: list = field(default_factory=list)  # Ids that failed for good
    errors: list = field(default_factory=list)


def fetch_page_size(page_size):
    """Ids pulled per page: 4x the base size, never above 200."""
    return max(1, min(page_size * FETCH_PAGE_MULTIPLIER, FETCH_PAGE_LIMIT))


class RemoteMailBackend:
    """Gmail API adapter. Holds no state beyond the service handle."""

    kind = "remote-mail"

    def __init__(self, service, audit, mailbox="me"):
        self.service = service
        self.audit = audit
        self.mailbox = mailbox

    # ---- folders ----

    def list_folders(self):
        try:
            result = self.service.users().labels().list(userId='me').execute()
        except remote.CALL_ERRORS as e:
            raise remote.classify(e, "listing labels")
        folders = [
            Folder(label['id'], label.get('name', label['id']), label.get('type', 'user').lower())
            for label in result.get('labels', [])
        ]
        self.audit.info("Found %d folder(s) in %s", len(folders), self.mailbox)
        return folders

    def resolve_folders(self, names):
        """Map folder names or label ids to Folders, case-insensitively."""
        folders = self.list_folders()
        by_key = {}
        for f in folders:
            by_key[f.id.lower()] = f
            by_key[f.name.lower()] = f

        resolved = []
        for name in names:
            folder = by_key.get(name.lower())
            if folder is None:
                self.audit.warning("Folder %r not found in %s, skipping", name, self.mailbox)
                continue
            resolved.append(folder)
        return resolved

    def folder_total(self, folder):
        """Total messages in a folder regardless of date."""
        try:
            label = self.service.users().labels().get(userId='me', id=folder.id).execute()
        except remote.CALL_ERRORS as e:
            raise remote.classify(e, f"reading folder {folder.name}")
        total = int(label.get('messagesTotal', 0))
        self.audit.info("%s: %s messages in total", folder.name, f"{total:,}")
        return total

    def mailbox_total(self):
        """Total messages in the whole mailbox."""
        try:
            profile = self.service.users().getProfile(userId='me').execute()
        except remote.CALL_ERRORS as e:
            raise remote.classify(e, f"reading the profile of {self.mailbox}")
        total = int(profile.get('messagesTotal', 0))
        self.audit.info("%s: %s messages in total", self.mailbox, f"{total:,}")
        return total

    # ---- matching ----

    def _list_request(self, folder, query, **params):
        kwargs = {"userId": 'me', "q": query}
        if folder is not None:
            kwargs["labelIds"] = [folder.id]
            if folder.id in SPAM_TRASH:
                kwargs["includeSpamTrash"] = True
        kwargs.update(params)
        return self.service.users().messages().list(**kwargs)

    def count_matching(self, folder, date_filter):
        """
        Number of messages in `folder` matching the filter.

        Uses Gmail's result size estimate; if that call fails, pages through
        bare ids and counts them here.
        """
        query = gmail_query(date_filter)
        where = folder.name if folder else self.mailbox
        try:
            result = self._list_request(
                folder, query, maxResults=1, fields="resultSizeEstimate"
            ).execute()
            count = int(result.get('resultSizeEstimate', 0))
            self.audit.info("%s: %s message(s) match %r", where, f"{count:,}", query)
            return count
        except RefreshError as e:
            raise AuthError(f"Authorization failed while counting {where}: {e}")
        except COUNT_FALLBACK_ERRORS as e:
            self.audit.warning(
                "Count query failed for %s (%s), counting page by page", where, remote.describe(e)
            )

        count = self._count_by_paging(folder, query)
        self.audit.info("%s: %s message(s) match %r (counted)", where, f"{count:,}", query)
        return count

    def _count_by_paging(self, folder, query):
        count = 0
        page_token = None
        while True:
            try:
                result = self._list_request(
                    folder, query, maxResults=500, pageToken=page_token,
                    fields="messages/id,nextPageToken",
                ).execute()
            except remote.CALL_ERRORS as e:
                raise remote.classify(e, "counting messages")
            count += len(result.get('messages', []))
            page_token = result.get('nextPageToken')
            if not page_token:
                return count

    def fetch_id_page(self, folder, date_filter, page_size, page_token=None):
        """
        A page of ids currently matching the filter, and the next page token.

        No page token is needed to make progress: as deletions land, the
        same query returns what is left. A token is only passed to step
        past messages that can't be deleted.
        """
        query = gmail_query(date_filter)
        params = {"maxResults": fetch_page_size(page_size), "fields": "messages/id,nextPageToken"}
        if page_token:
            params["pageToken"] = page_token
        try:
            result = self._list_request(folder, query, **params).execute()
        except remote.CALL_ERRORS as e:
            raise remote.classify(e, "fetching message ids")
        ids = [m['id'] for m in result.get('messages', [])]
        self.audit.info("Fetched %d message id(s)", len(ids))
        return ids, result.get('nextPageToken')

    # ---- deleting ----

    def delete_batch(self, ids):
        """
        Permanently delete up to 20 messages in one HTTP batch.

        Every sub-response is judged on its own: 2xx succeeded, throttled
        ones are failed and flagged for retry, anything else failed.
        """
        if len(ids) > DELETE_BATCH_LIMIT:
            raise ValueError(f"Batch of {len(ids)} exceeds the {DELETE_BATCH_LIMIT} request limit")

        outcome = BatchOutcome()
        if not ids:
            return outcome

        responses = {}

        def _cb(request_id, response, exception):
            responses[request_id] = exception

        batch = self.service.new_batch_http_request(callback=_cb)
        for index, msg_id in enumerate(ids):
            batch.add(
                self.service.users().messages().delete(userId='me', id=msg_id),
                request_id=str(index),
            )

        try:
            batch.execute()
        except RefreshError as e:
            raise AuthError(f"Authorization failed while deleting: {e}")
        except HttpError as e:
            # The batch envelope itself was refused
            return self._whole_batch_failed(ids, e)
        except remote.NETWORK_ERRORS as e:
            outcome.failed = len(ids)
            outcome.failed_ids = list(ids)
            outcome.errors.append(str(e))
            return outcome

        for index, msg_id in enumerate(ids):
            key = str(index)
            if key not in responses:
                outcome.failed += 1
                outcome.failed_ids.append(msg_id)
                outcome.errors.append(f"{msg_id}: no response")
                continue
            exc = responses[key]
            if exc is None:
                outcome.succeeded += 1
            elif remote.is_throttle(exc):
                outcome.failed += 1
                outcome.throttled = True
                outcome.retry_ids.append(msg_id)
            else:
                outcome.failed += 1
                outcome.failed_ids.append(msg_id)
                if remote.is_quota_or_permission(exc):
                    outcome.denied = True
                outcome.errors.append(f"{msg_id}: {remote.describe(exc)}")
        return outcome

    def _whole_batch_failed(self, ids, exc):
        outcome = BatchOutcome(failed=len(ids))
        if remote.is_throttle(exc):
            outcome.throttled = True
            outcome.retry_ids = list(ids)
        else:
            outcome.failed_ids = list(ids)
            outcome.denied = remote.is_quota_or_permission(exc)
        outcome.errors.append(remote.describe(exc))
        return outcome
