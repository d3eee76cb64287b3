import json
import logging
from typing import override

from django.core.management.base import BaseCommand, CommandError

from voting.models import Election
from voting.results import build_results

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Print the aggregated results of an election as JSON, whether or not they are public."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument("election_slug", help="Slug of the election.")
        parser.add_argument(
            "--indent",
            type=int,
            default=2,
            help="JSON indentation (0 = compact).",
        )

    @override
    def handle(self, *args, **options) -> None:
        slug = str(options["election_slug"]).strip()
        indent: int = int(options.get("indent") or 0)

        election = Election.objects.filter(slug=slug).first()
        if election is None:
            raise CommandError(f"Election {slug!r} does not exist.")

        payload = build_results(election)
        logger.info("Exported results election=%s projects=%d", slug, len(payload["projects"]))
        self.stdout.write(json.dumps(payload, indent=indent or None, sort_keys=True))
