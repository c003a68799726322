from django.core.management.base import BaseCommand

from shopfloor.models import JobPlanning
from shopfloor.workflows.executor import repair_step_states


class Command(BaseCommand):
    help = "Fix steps whose status disagrees with their start/end timestamps"

    def add_arguments(self, parser):
        parser.add_argument("--job", dest="nrc_job_no", help="Only repair plannings of this job number")

    def handle(self, *args, **options):
        qs = JobPlanning.objects.order_by("nrc_job_no", "id")
        if options.get("nrc_job_no"):
            qs = qs.filter(nrc_job_no=options["nrc_job_no"])

        total = 0
        for planning in qs:
            fixed = repair_step_states(planning)
            if fixed:
                self.stdout.write(f"{planning.nrc_job_no} (plan #{planning.pk}): {fixed} step(s) repaired")
            total += fixed

        self.stdout.write(self.style.SUCCESS(f"Repaired {total} step(s)"))
