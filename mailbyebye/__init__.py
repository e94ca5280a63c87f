"""
MailByeBye - Bulk purge of hosted Google Workspace mailboxes.

Two ways to get rid of old mail:
  remote-mail  Gmail API, message ids pulled in pages and deleted in
               small HTTP batches with throttle backoff
  bulk-search  Google Vault search job, polled to completion, then a
               hard purge of everything it matched
"""

__version__ = "1.0.0"
