import click
from flask.cli import with_appcontext

from subscription_renewer.controllers.renewal_controller import get_renewer


@click.command("renew-subscriptions")
@with_appcontext
def renew_subscriptions():
    """Run one renewal tick now and print what happened."""
    summary = get_renewer().run()

    if summary.skipped:
        click.echo("⏭️ A renewal run is already in progress.")
        return
    if summary.error:
        click.echo(f"❌ Renewal run failed: {summary.error}")
        return

    for result in summary.results:
        if result.renewed:
            click.echo(f"✅ {result.user_name} ({result.index_name}/{result.doc_id}) -> {result.expiration}")
        else:
            click.echo(f"⚠️ {result.user_name} ({result.index_name}/{result.doc_id}): {result.error}")
    click.echo(f"✅ Done: {summary.renewed_count} renewed, {summary.failed_count} failed")


@click.command("list-expiring")
@with_appcontext
def list_expiring():
    """Print connection records whose subscription needs renewing."""
    records = get_renewer().store.list_expiring_records()
    if not records:
        click.echo("📭 No expiring subscriptions.")
        return
    for record in records:
        click.echo(f"{record.index_name}\t{record.doc_id}\t{record.user_name}\t{record.expiration_datetime}")
