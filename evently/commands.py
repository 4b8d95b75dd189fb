import click
from evently.services.ledger_audit_service import LedgerAuditService
from evently.services.payment_service import PaymentService


def register_commands(app):
    @app.cli.command("audit-ledger")
    @click.option(
        "--only-flagged",
        is_flag=True,
        help="Only recount events flagged by a prevented ledger underflow.",
    )
    def audit_ledger(only_flagged):
        """Recount attendee ledgers from their registrations."""
        results = LedgerAuditService.audit_all_events(only_flagged=only_flagged)
        for result in results:
            if result["corrected"]:
                click.echo(
                    f"Event {result['event_id']}: "
                    f"{result['previous']} -> {result['recomputed']}"
                )
        corrected = sum(1 for result in results if result["corrected"])
        click.echo(f"Checked {len(results)} event(s), corrected {corrected}.")

    @app.cli.command("purge-pending")
    def purge_pending():
        """Delete pending registrations older than the payment hold TTL."""
        purged = PaymentService.purge_expired_holds()
        click.echo(f"Purged {purged} expired pending registration(s).")
