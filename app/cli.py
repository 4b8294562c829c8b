"""CLI tools for clinic administration."""

import asyncio

import click

from app.db.models import Clinic, ClinicSettings
from app.db.session import SessionLocal


@click.group()
def cli():
    """Clinic automation CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Clinic name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
def create_clinic(name: str, slug: str):
    """
    Create a clinic tenant.

    Example:
        python -m app.cli create-clinic --name "Clínica Sorriso" --slug "sorriso"
    """
    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            return

        existing = db.query(Clinic).filter(Clinic.slug == slug).first()
        if existing:
            click.echo(f"❌ Clinic with slug '{slug}' already exists")
            return

        clinic = Clinic(name=name, slug=slug)
        db.add(clinic)
        db.commit()

        click.echo(f"✓ Created clinic: {name}")
        click.echo(f"  ID: {clinic.id}")
        click.echo(f"  Slug: {slug}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--slug", required=True, help="Clinic slug")
@click.option("--whatsapp-token", default=None, help="WhatsApp Cloud API access token")
@click.option("--whatsapp-phone-number-id", default=None, help="WhatsApp sender phone number ID")
@click.option("--instagram-token", default=None, help="Instagram messaging access token")
def configure_messaging(
    slug: str,
    whatsapp_token: str | None,
    whatsapp_phone_number_id: str | None,
    instagram_token: str | None,
):
    """
    Store messaging credentials for a clinic.

    Only the options given are changed.

    Example:
        python -m app.cli configure-messaging --slug sorriso --whatsapp-token EAAG... --whatsapp-phone-number-id 1234
    """
    db = SessionLocal()
    try:
        clinic = db.query(Clinic).filter(Clinic.slug == slug.lower()).first()
        if not clinic:
            click.echo(f"❌ Clinic not found: {slug}")
            return

        clinic_settings = clinic.settings
        if clinic_settings is None:
            clinic_settings = ClinicSettings(clinic_id=clinic.id)
            db.add(clinic_settings)

        if whatsapp_token is not None:
            clinic_settings.whatsapp_token = whatsapp_token
        if whatsapp_phone_number_id is not None:
            clinic_settings.whatsapp_phone_number_id = whatsapp_phone_number_id
        if instagram_token is not None:
            clinic_settings.instagram_access_token = instagram_token
        db.commit()

        click.echo(f"✓ Messaging settings updated for {clinic.name}")
        click.echo(
            f"  WhatsApp: {'configured' if clinic_settings.whatsapp_token and clinic_settings.whatsapp_phone_number_id else 'not configured'}"
        )
        click.echo(
            f"  Instagram: {'configured' if clinic_settings.instagram_access_token else 'not configured'}"
        )

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
def process_follow_ups():
    """
    Run one follow-up dispatch cycle and print the counts.

    Example:
        python -m app.cli process-follow-ups
    """
    from app.worker import run_once

    report = asyncio.run(run_once())
    click.echo(
        f"✓ claimed={report.claimed} sent={report.sent} "
        f"failed={report.failed} reclaimed={report.reclaimed}"
    )


@cli.command()
@click.option("--slug", required=True, help="Clinic slug")
def rule_stats(slug: str):
    """
    Print follow-up rules with their execution counts.

    Example:
        python -m app.cli rule-stats --slug sorriso
    """
    from app.services import follow_up_service

    db = SessionLocal()
    try:
        clinic = db.query(Clinic).filter(Clinic.slug == slug.lower()).first()
        if not clinic:
            click.echo(f"❌ Clinic not found: {slug}")
            return

        rules = follow_up_service.list_rules(db, clinic.id)
        if not rules:
            click.echo("No follow-up rules")
            return
        stats = follow_up_service.get_rule_stats(db, clinic.id, [r.id for r in rules])
        for rule in rules:
            s = stats.get(rule.id)
            state = "active" if rule.active else "inactive"
            click.echo(f"{rule.name} [{rule.trigger}, {rule.delay_days:+d}d, {state}]")
            if s:
                click.echo(
                    f"  total={s.total} pending={s.pending} sent={s.sent} failed={s.failed}"
                )
    finally:
        db.close()


if __name__ == "__main__":
    cli()
