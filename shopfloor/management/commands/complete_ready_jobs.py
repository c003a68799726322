from django.core.management.base import BaseCommand

from shopfloor.workflows.completion import complete_job_if_ready, complete_ready_jobs


class Command(BaseCommand):
    help = "Archive jobs whose steps are all stopped and whose dispatch is accepted"

    def add_arguments(self, parser):
        parser.add_argument("--job", dest="nrc_job_no", help="Check a single job number")

    def handle(self, *args, **options):
        nrc_job_no = options.get("nrc_job_no")

        if nrc_job_no:
            result = complete_job_if_ready(nrc_job_no)
            if result["completed"]:
                self.stdout.write(self.style.SUCCESS(f"{nrc_job_no}: completed"))
            else:
                self.stdout.write(f"{nrc_job_no}: not completed ({result['reason']})")
            return

        count = complete_ready_jobs()
        self.stdout.write(self.style.SUCCESS(f"Completed {count} job(s)"))
