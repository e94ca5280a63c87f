"""
Vault holds on a mailbox.

Held mail survives a purge. These helpers find the MAIL holds that cover
an account and, once the operator types REMOVE, take the account out of
the ones that name it directly. Org-unit holds can't be lifted per
account, so they are only reported.
"""
from dataclasses import dataclass

from mailbyebye import remote


@dataclass
class AccountHold:
    matter_id: str
    matter_name: str
    hold_id: str
    hold_name: str
    account_id: str = None  # None for an org-unit hold
    org_unit_id: str = None

    @property
    def removable(self):
        return self.account_id is not None

    def describe(self):
        scope = f"org unit {self.org_unit_id}" if self.org_unit_id else "account"
        return f"{self.hold_name} in matter {self.matter_name} ({scope})"


def _paged(request_fn, key):
    page_token = None
    while True:
        result = request_fn(page_token).execute()
        yield from result.get(key, [])
        page_token = result.get('nextPageToken')
        if not page_token:
            return


def open_matters(vault):
    return _paged(
        lambda token: vault.matters().list(state="OPEN", pageSize=100, pageToken=token),
        'matters',
    )


def matter_holds(vault, matter_id):
    return _paged(
        lambda token: vault.matters().holds().list(matterId=matter_id, pageToken=token),
        'holds',
    )


def find_account_holds(vault, mailbox, audit):
    """All MAIL holds in open matters that keep `mailbox`'s mail."""
    mailbox = mailbox.lower()
    found = []
    try:
        for matter in open_matters(vault):
            for hold in matter_holds(vault, matter['matterId']):
                if hold.get('corpus') != 'MAIL':
                    continue
                base = dict(
                    matter_id=matter['matterId'],
                    matter_name=matter.get('name', matter['matterId']),
                    hold_id=hold['holdId'],
                    hold_name=hold.get('name', hold['holdId']),
                )
                org_unit = hold.get('orgUnit')
                if org_unit:
                    found.append(AccountHold(org_unit_id=org_unit.get('orgUnitId'), **base))
                    continue
                for account in hold.get('accounts', []):
                    if (account.get('email') or '').lower() == mailbox:
                        found.append(AccountHold(account_id=account['accountId'], **base))
    except remote.CALL_ERRORS as e:
        audit.error("Could not list Vault holds for %s: %s", mailbox, remote.describe(e))
        raise remote.classify(e, "listing holds")

    if found:
        audit.warning("%s is covered by %d hold(s)", mailbox, len(found))
        for hold in found:
            audit.info("  Hold: %s", hold.describe())
    else:
        audit.info("No Vault holds cover %s", mailbox)
    return found


def remove_account_from_holds(vault, holds, audit):
    """Take the account out of every directly-named hold. Returns how many."""
    removed = 0
    for hold in holds:
        if not hold.removable:
            audit.warning("Leaving %s alone: org-unit holds can't be lifted per account", hold.describe())
            continue
        try:
            vault.matters().holds().accounts().delete(
                matterId=hold.matter_id, holdId=hold.hold_id, accountId=hold.account_id
            ).execute()
        except remote.CALL_ERRORS as e:
            audit.error("Could not remove account from %s: %s", hold.describe(), remote.describe(e))
            continue
        removed += 1
        audit.success("Removed account from %s", hold.describe())
    return removed
