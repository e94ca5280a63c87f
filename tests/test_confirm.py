from mailbyebye.confirm import ConfirmationGate, ConfirmToken


def test_exact_token_confirms(audit):
    gate = ConfirmationGate(audit, prompt=lambda _: "YES")
    assert gate.confirm(ConfirmToken.YES, "Delete?") is True


def test_lowercase_is_a_decline(audit):
    gate = ConfirmationGate(audit, prompt=lambda _: "yes")
    assert gate.confirm(ConfirmToken.YES, "Delete?") is False


def test_wrong_token_is_a_decline(audit):
    gate = ConfirmationGate(audit, prompt=lambda _: "YES")
    assert gate.confirm(ConfirmToken.DELETE, "Purge?") is False


def test_surrounding_whitespace_ignored(audit):
    gate = ConfirmationGate(audit, prompt=lambda _: "  DELETE\n")
    assert gate.confirm(ConfirmToken.DELETE, "Purge?") is True


def test_preset_answer_skips_prompt(audit):
    def boom(_):
        raise AssertionError("should not prompt")

    gate = ConfirmationGate(audit, prompt=boom, preset="REMOVE")
    assert gate.confirm(ConfirmToken.REMOVE, "Lift holds?") is True
    assert gate.confirm(ConfirmToken.YES, "Delete?") is False
    assert gate.asked == 2


def test_eof_declines(audit):
    def eof(_):
        raise EOFError

    gate = ConfirmationGate(audit, prompt=eof)
    assert gate.confirm(ConfirmToken.YES, "Delete?") is False


def test_decisions_are_audited(audit, caplog):
    caplog.set_level("INFO", logger="mailbyebye")
    ConfirmationGate(audit, prompt=lambda _: "nope").confirm(ConfirmToken.YES, "Delete 3?")
    messages = [r.getMessage() for r in caplog.records]
    assert any("Delete 3?" in m for m in messages)
    assert any("Declined" in m for m in messages)
