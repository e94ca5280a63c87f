"""
MailByeBye command line.

Validates everything up front, then walks the mailboxes (and folders)
one at a time and prints a run summary.
"""
import argparse
import sys

from mailbyebye.audit import AuditLog, setup_logging
from mailbyebye.auth import build_gmail_service, build_vault_service, check_credentials
from mailbyebye.config import BACKEND_BULK, BACKENDS, RunContext, load_config
from mailbyebye.confirm import ConfirmationGate
from mailbyebye.engine import TARGET_ERRORS, DeletionEngine
from mailbyebye.errors import AuthError, ConflictingFilter, ValidationError
from mailbyebye.filters import build_date_filter, year_range
from mailbyebye.gmail_backend import VIRTUAL_LABELS, RemoteMailBackend
from mailbyebye.vault_backend import BulkSearchBackend

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mailbyebye",
        description="MailByeBye - Bulk purge old mail from Google Workspace mailboxes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mailbyebye --days 365 --dry-run                      # Preview your own mailbox
  mailbyebye --mailbox a@example.com --start 2023-01-01 --end 2023-12-31
  mailbyebye --mailbox a@example.com --year 2019 --folder INBOX --folder SPAM
  mailbyebye --mailbox a@example.com --days 730 --backend bulk-search --check-only
  mailbyebye --mailbox a@example.com --days 730 --backend bulk-search --extended-wait
        """
    )
    parser.add_argument("--mailbox", action="append", metavar="ADDRESS",
                        help="Mailbox to clean (repeatable; default: the signed-in user)")
    parser.add_argument("--folder", action="append", metavar="NAME",
                        help="Folder/label to clean (repeatable; default: whole mailbox)")
    parser.add_argument("--all-folders", action="store_true",
                        help="Clean every folder one after another")

    when = parser.add_argument_group("date filter (pick one)")
    when.add_argument("--days", type=int, metavar="N",
                      help="Everything older than N days")
    when.add_argument("--cutoff", metavar="DATE",
                      help="Everything received before DATE")
    when.add_argument("--start", metavar="DATE", help="Range start (inclusive)")
    when.add_argument("--end", metavar="DATE", help="Range end (inclusive, max 365 days after start)")
    when.add_argument("--year", metavar="YYYY", help="Everything from one calendar year")

    parser.add_argument("--backend", choices=BACKENDS,
                        help="remote-mail (Gmail API batches) or bulk-search (Vault search + purge)")
    parser.add_argument("--check-only", action="store_true",
                        help="Inventory only: report totals and matches, never delete")
    parser.add_argument("--dry-run", action="store_true",
                        help="Report what would be deleted")
    parser.add_argument("--confirm", metavar="TOKEN",
                        help="Answer the confirmation prompt up front (YES / DELETE / REMOVE)")
    parser.add_argument("--extended-wait", action="store_true",
                        help="Wait up to 120 minutes for a bulk search instead of 10")
    parser.add_argument("--remove-holds", action="store_true",
                        help="Offer to take the mailbox out of Vault holds before a purge")
    parser.add_argument("--page-size", type=int, metavar="N",
                        help="Base page size; ids are fetched 4x this at a time, max 200")
    parser.add_argument("--config", metavar="FILE", help="Config file to read")
    parser.add_argument("--no-log-file", action="store_true", help="Don't write an audit log file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logs")
    return parser


def resolve_filter(config, args):
    """DateFilter from the command line, or from the config file if none given there."""
    cli_given = any(v is not None for v in (args.days, args.cutoff, args.start, args.end, args.year))
    if cli_given:
        days, cutoff, start, end = args.days, args.cutoff, args.start, args.end
        if args.year is not None:
            if start is not None or end is not None:
                raise ConflictingFilter("--year can't be combined with --start/--end")
            start, end = year_range(args.year)
    else:
        days = config.get("DAYS_OLD")
        cutoff = config.get("CUTOFF_DATE")
        start = config.get("START_DATE")
        end = config.get("END_DATE")
    return build_date_filter(days=days, cutoff=cutoff, start=start, end=end)


def resolve_backend(config, args):
    backend = args.backend or config.get("BACKEND")
    if backend not in BACKENDS:
        raise ValidationError(
            f"Unknown backend {backend!r}", usage=f"BACKEND / --backend one of {', '.join(BACKENDS)}"
        )
    return backend


def resolve_page_size(config, args):
    page_size = args.page_size if args.page_size is not None else config.get("PAGE_SIZE")
    if not page_size or page_size < 1:
        raise ValidationError(f"Page size must be at least 1, got {page_size}", usage="--page-size 50")
    return page_size


def validate(args):
    """Everything that must hold before touching the network."""
    if args.check_only and args.dry_run:
        raise ValidationError("--check-only and --dry-run are separate modes", usage="pick one of them")
    if args.folder and args.all_folders:
        raise ValidationError("--folder and --all-folders can't be combined")

    config = load_config(args.config)
    backend = resolve_backend(config, args)
    date_filter = resolve_filter(config, args)
    page_size = resolve_page_size(config, args)

    if backend == BACKEND_BULK:
        if not args.mailbox:
            raise ValidationError("The bulk-search backend needs explicit mailboxes", usage="--mailbox user@example.com")
        if args.folder or args.all_folders:
            raise ValidationError("The bulk-search backend searches whole mailboxes; drop --folder/--all-folders")
    if config.get("SERVICE_ACCOUNT_FILE") and not args.mailbox:
        raise ValidationError(
            "A service account acts on behalf of a named mailbox; none given",
            usage="--mailbox user@example.com",
        )
    check_credentials(config, backend_needs_vault=backend == BACKEND_BULK)
    return config, backend, date_filter, page_size


def print_header(ctx, date_filter, mailboxes):
    print("=" * 60)
    print("MailByeBye - Workspace Mailbox Cleanup")
    print("=" * 60)
    print(f"  Backend:   {ctx.backend}")
    print(f"  Filter:    {date_filter.describe()}")
    print(f"  Mailboxes: {', '.join(mailboxes)}")
    if ctx.check_only:
        print("  Mode:      CHECK ONLY - nothing will be deleted")
    elif ctx.dry_run:
        print("  Mode:      DRY RUN - nothing will be deleted")
    else:
        print("  Mode:      LIVE")
    if ctx.audit.path:
        print(f"  Audit log: {ctx.audit.path}")
    print("=" * 60)


def print_summary(ctx):
    totals = ctx.totals
    print()
    print("=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"  Targets processed: {totals.targets:,}")
    if ctx.dry_run:
        print(f"  Would delete:      {totals.would_delete:,}")
    elif ctx.backend == BACKEND_BULK:
        print(f"  Submitted for purge: {totals.purged:,}")
    else:
        print(f"  Deleted:           {totals.deleted:,}")
        print(f"  Failed:            {totals.failed:,}")
    print(f"  Errors:            {totals.errors:,}")
    print(f"  Elapsed:           {ctx.elapsed():.1f}s")
    print("=" * 60)


def folder_targets(ctx, backend, args):
    if args.all_folders:
        return [f for f in backend.list_folders() if f.id not in VIRTUAL_LABELS]
    if args.folder:
        return backend.resolve_folders(args.folder)
    return [None]


def clean_with_remote_mail(ctx, mailbox, date_filter, args):
    service = build_gmail_service(ctx.config, mailbox)
    backend = RemoteMailBackend(service, ctx.audit, mailbox)
    engine = DeletionEngine(ctx, backend)

    for folder in folder_targets(ctx, backend, args):
        if ctx.check_only and folder is not None:
            backend.folder_total(folder)
        elif ctx.check_only:
            backend.mailbox_total()
        tally = engine.run(date_filter, folder=folder)
        ctx.totals.add_tally(tally)
        if tally.aborted or tally.failed:
            ctx.totals.errors += 1


def clean_with_bulk_search(ctx, vault, mailbox, date_filter):
    gmail = build_gmail_service(ctx.config, mailbox)
    backend = BulkSearchBackend(vault, gmail, ctx.audit)
    result = DeletionEngine(ctx, backend).run(date_filter, mailbox=mailbox)
    ctx.totals.add_bulk(result)
    if result.aborted or result.incomplete:
        ctx.totals.errors += 1


def run(argv=None, prompt=input):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config, backend, date_filter, page_size = validate(args)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.usage:
            print(f"  Expected: {e.usage}", file=sys.stderr)
        return EXIT_USAGE

    audit = AuditLog(None if args.no_log_file else config["LOG_DIR"])
    ctx = RunContext(
        config=config,
        audit=audit,
        gate=ConfirmationGate(audit, prompt=prompt, preset=args.confirm),
        backend=backend,
        dry_run=args.dry_run,
        check_only=args.check_only,
        extended_wait=args.extended_wait,
        remove_holds=args.remove_holds,
        page_size=page_size,
    )
    mailboxes = args.mailbox or ["me"]
    print_header(ctx, date_filter, mailboxes)
    audit.info(
        "Run started: backend=%s filter=%s mailboxes=%s dry_run=%s check_only=%s",
        backend, date_filter.describe(), ",".join(mailboxes), ctx.dry_run, ctx.check_only,
    )

    try:
        vault = build_vault_service(config) if backend == BACKEND_BULK else None
        for mailbox in mailboxes:
            audit.info("Processing mailbox %s", mailbox)
            try:
                if backend == BACKEND_BULK:
                    clean_with_bulk_search(ctx, vault, mailbox, date_filter)
                else:
                    clean_with_remote_mail(ctx, mailbox, date_filter, args)
            except TARGET_ERRORS as e:
                audit.error("Mailbox %s: %s", mailbox, e)
                ctx.totals.errors += 1
    except AuthError as e:
        audit.error("Authorization failed, stopping: %s", e)
        ctx.totals.errors += 1
    except KeyboardInterrupt:
        audit.error("Interrupted by user")
        print_summary(ctx)
        audit.close()
        return EXIT_INTERRUPTED

    print_summary(ctx)
    status = EXIT_ERROR if ctx.totals.errors else EXIT_OK
    audit.append(
        "SUCCESS" if status == EXIT_OK else "ERROR",
        "Run finished: deleted=%d failed=%d purged=%d would_delete=%d errors=%d",
        ctx.totals.deleted, ctx.totals.failed, ctx.totals.purged,
        ctx.totals.would_delete, ctx.totals.errors,
    )
    audit.close()
    return status


def main():
    raise SystemExit(run())


if __name__ == "__main__":
    main()
