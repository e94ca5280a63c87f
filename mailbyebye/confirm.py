"""
Confirmation gate. Destructive steps wait for an operator to type an
exact token.
"""
from enum import Enum


class ConfirmToken(Enum):
    YES = "YES"        # Batch deletion through the Gmail API
    REMOVE = "REMOVE"  # Take the mailbox out of Vault holds
    DELETE = "DELETE"  # Irreversible bulk purge


class ConfirmationGate:
    """
    Ask before doing something destructive.

    Comparison is exact and case-sensitive: "yes" does not confirm YES.
    A preset answer (from --confirm) is used instead of prompting and goes
    through the same comparison.
    """

    def __init__(self, audit, prompt=input, preset=None):
        self.audit = audit
        self.prompt = prompt
        self.preset = preset
        self.asked = 0

    def confirm(self, token, message):
        self.asked += 1
        self.audit.info("Confirmation requested (%s): %s", token.value, message)

        if self.preset is not None:
            answer = self.preset
        else:
            print(f"\n{message}")
            try:
                answer = self.prompt(f"Type '{token.value}' to confirm: ")
            except EOFError:
                answer = ""

        answer = (answer or "").strip()
        if answer == token.value:
            self.audit.info("Confirmed with %s", token.value)
            return True

        self.audit.warning("Declined (expected %s, got %r)", token.value, answer)
        return False
