#!/usr/bin/env python3
"""
Followup Queue CLI Tool

Management and testing commands for the PRIMA reminder followup pipeline.
Useful for inspecting the queue, registering test reminders, running a
delivery pass by hand and checking how a reply would be triaged.

Usage:
    python tools/followup_cli.py stats
    python tools/followup_cli.py list-jobs --limit 20
    python tools/followup_cli.py register --patient-id p-1 --reminder-id r-1 --phone 081234567890 --name "Ibu Sari" --title "Amlodipine 5mg"
    python tools/followup_cli.py process --mock
    python tools/followup_cli.py cancel r-1
    python tools/followup_cli.py analyze "Darurat! sesak napas" --dry-run
    python tools/followup_cli.py link p-1 "sudah"
"""
import uuid
from typing import Any, Dict, List

import click
from dotenv import load_dotenv
from tabulate import tabulate

from followup.channel_adapter import create_channel_adapter
from followup.executor import FollowupExecutor
from scheduling.models import ReminderPriority, ReminderType
from scheduling.queue import FollowupQueue
from scheduling.scheduler import FollowupScheduler
from shared.audit import LoggingAuditSink
from shared.job_store import create_job_store
from shared.notifications import RecordingNotificationSink, StoreNotificationSink
from triage.escalation import EscalationClassifier
from triage.intent_client import IntentClassifierClient
from triage.linker import ConfirmationLinker
from utils.time_utils import format_for_patient


class FollowupManager:
    """Wires the pipeline components for CLI commands"""

    def __init__(self, backend: str = None):
        self.store = create_job_store(backend)
        self.queue = FollowupQueue(self.store)
        self.scheduler = FollowupScheduler(self.store, queue=self.queue)

    def queue_stats(self) -> Dict[str, int]:
        return self.queue.get_queue_stats().to_dict()

    def job_rows(self, limit: int) -> List[List[Any]]:
        rows = []
        for job in self.queue.list_jobs(limit):
            record = self.scheduler.get_followup(job.followup_id)
            rows.append([
                job.id[:24],
                record.stage.value if record else "?",
                record.patient_id if record else "?",
                format_for_patient(job.scheduled_at),
                job.status.value,
                f"{job.retry_count}/{job.max_retries}",
                (job.error or "")[:40],
            ])
        return rows

    def build_executor(self, mock: bool) -> FollowupExecutor:
        channel = create_channel_adapter(mock=mock)
        classifier = EscalationClassifier(StoreNotificationSink(self.store), intent_client=IntentClassifierClient())
        return FollowupExecutor(
            queue=self.queue,
            scheduler=self.scheduler,
            channel=channel,
            classifier=classifier,
            audit_sink=LoggingAuditSink(),
        )


@click.group()
@click.option('--backend', type=click.Choice(['redis', 'memory']), default=None,
              help='Job store backend (default: JOB_STORE_BACKEND)')
@click.pass_context
def cli(ctx, backend):
    """PRIMA Reminder Followup Management CLI"""
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj['manager'] = FollowupManager(backend=backend)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show followup queue statistics"""
    manager = ctx.obj['manager']
    queue_stats = manager.queue_stats()
    click.echo("📊 Followup Queue Statistics")
    click.echo(tabulate([[k, v] for k, v in queue_stats.items()], headers=["State", "Jobs"], tablefmt="grid"))


@cli.command()
@click.option('--limit', default=20, help="Maximum number of jobs to show")
@click.pass_context
def list_jobs(ctx, limit):
    """List queued followup jobs in due order"""
    manager = ctx.obj['manager']
    rows = manager.job_rows(limit)
    if not rows:
        click.echo("📋 No queued followup jobs")
        return
    click.echo(tabulate(
        rows,
        headers=["Job", "Stage", "Patient", "Due", "Status", "Retries", "Last error"],
        tablefmt="grid",
    ))


@cli.command()
@click.option('--patient-id', required=True, help="Patient ID")
@click.option('--reminder-id', help="Reminder log ID (generated if not provided)")
@click.option('--phone', required=True, help="Patient WhatsApp number")
@click.option('--name', 'patient_name', required=True, help="Patient name")
@click.option('--title', required=True, help="Reminder title, e.g. medication name")
@click.option('--type', 'reminder_type', type=click.Choice([t.value for t in ReminderType]),
              default=ReminderType.MEDICATION.value)
@click.option('--priority', type=click.Choice([p.value for p in ReminderPriority]),
              default=ReminderPriority.MEDIUM.value)
@click.pass_context
def register(ctx, patient_id, reminder_id, phone, patient_name, title, reminder_type, priority):
    """Record a sent reminder and schedule its followups"""
    manager = ctx.obj['manager']
    reminder_id = reminder_id or f"test-reminder-{uuid.uuid4().hex[:8]}"
    records = manager.scheduler.register_reminder_delivery(
        patient_id=patient_id,
        reminder_log_id=reminder_id,
        phone_number=phone,
        patient_name=patient_name,
        reminder_title=title,
        reminder_type=ReminderType(reminder_type),
        priority=ReminderPriority(priority),
    )
    click.echo(f"✅ Scheduled {len(records)} followups for reminder {reminder_id}")
    click.echo(tabulate(
        [[r.id, r.stage.value, format_for_patient(r.scheduled_at)] for r in records],
        headers=["Followup", "Stage", "Due"],
        tablefmt="grid",
    ))


@cli.command()
@click.option('--mock', is_flag=True, help="Use the mock channel (no WhatsApp messages are sent)")
@click.pass_context
def process(ctx, mock):
    """Claim and deliver due followups once"""
    manager = ctx.obj['manager']
    executor = manager.build_executor(mock=mock)
    summary = executor.run_once()
    if not summary.claimed:
        click.echo("📋 No due followups")
        return
    click.echo(f"📞 Processed {summary.claimed} followups")
    click.echo(tabulate([[k, v] for k, v in summary.to_dict().items()], headers=["Outcome", "Count"]))


@cli.command()
@click.argument('reminder_id')
@click.pass_context
def cancel(ctx, reminder_id):
    """Cancel the pending followups of a reminder"""
    manager = ctx.obj['manager']
    cancelled = manager.scheduler.cancel_followups_for_reminder(reminder_id)
    if cancelled:
        click.echo(f"🛑 Cancelled {len(cancelled)} followups for reminder {reminder_id}")
    else:
        click.echo(f"📋 No pending followups for reminder {reminder_id}")


@cli.command()
@click.argument('text')
@click.option('--patient-id', default="cli-patient", help="Patient the message is attributed to")
@click.option('--dry-run', is_flag=True, help="Show escalations without creating notifications")
@click.pass_context
def analyze(ctx, text, patient_id, dry_run):
    """Classify a message and show the escalations it would raise"""
    manager = ctx.obj['manager']
    sink = RecordingNotificationSink() if dry_run else StoreNotificationSink(manager.store)
    classifier = EscalationClassifier(sink, intent_client=IntentClassifierClient())

    analysis = classifier.classify(text)
    events = classifier.analyze_message(patient_id, text, analysis)

    click.echo(tabulate([[k, v] for k, v in analysis.to_dict().items()], headers=["Field", "Value"], tablefmt="grid"))
    if events:
        click.echo(f"\n🚨 Escalations: {', '.join(e.reason.value for e in events)}")
    else:
        click.echo("\n✅ No escalation needed")


@cli.command()
@click.argument('patient_id')
@click.argument('text')
@click.option('--reminder-id', help="Reminder log ID from the conversation context")
@click.pass_context
def link(ctx, patient_id, text, reminder_id):
    """Link a reply to the patient's latest pending reminder"""
    manager = ctx.obj['manager']
    linker = ConfirmationLinker(manager.scheduler.reminder_log, audit_sink=LoggingAuditSink())
    context = {"reminder_log_id": reminder_id} if reminder_id else None
    result = linker.link_confirmation_to_reminder(patient_id, text, context)

    if not result.success:
        click.echo(f"⚠️  {result.message}")
        return

    confirmation = result.linked_confirmation
    click.echo(f"✅ {result.message}")
    click.echo(f"   Confidence: {confirmation.confidence}%")
    click.echo(f"   Needs follow-up: {'yes' if result.requires_follow_up else 'no'}")
    if confirmation.response_type.is_conclusive:
        cancelled = manager.scheduler.cancel_followups_for_reminder(confirmation.reminder_log_id)
        click.echo(f"   Cancelled followups: {len(cancelled)}")


@cli.command()
@click.pass_context
def redis_status(ctx):
    """Check the job store connection"""
    manager = ctx.obj['manager']
    try:
        ok = manager.store.ping()
    except Exception as e:
        click.echo(f"❌ Job store connection failed: {e}")
        return
    click.echo(f"✅ Job store connection: {'OK' if ok else 'Failed'}")
    click.echo(f"📊 Followup keys: {len(manager.store.scan_keys('followup:*'))}")


if __name__ == '__main__':
    cli()
