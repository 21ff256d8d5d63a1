from django.core.management.base import BaseCommand, CommandError

from audits.models import AuditRecord
from audits.services import compute_audit_stats
from inventory.ledger import replay_quantity
from inventory.models import Inventory


class Command(BaseCommand):
    help = "Replay the ledger for every part and recount audit aggregates; fail on any drift."

    def add_arguments(self, parser):
        parser.add_argument("--part", dest="part_codes", action="append", default=[], help="Only check these part codes.")

    def _check_inventory(self, part_codes):
        mismatches = []
        inventories = Inventory.objects.select_related("part").order_by("part__code")
        if part_codes:
            inventories = inventories.filter(part__code__in=part_codes)
        for inventory in inventories:
            replayed = replay_quantity(inventory.part_id)
            if replayed != inventory.current_qty:
                mismatches.append(f"part {inventory.part.code}: current_qty={inventory.current_qty} ledger={replayed}")
        return mismatches

    def _check_audits(self):
        mismatches = []
        for audit in AuditRecord.objects.order_by("audit_date", "code"):
            stats = compute_audit_stats(audit)
            stored = (audit.total_items, audit.matched_items, audit.discrepancy_items)
            fresh = (stats.total_items, stats.matched_items, stats.discrepancy_items)
            if stored != fresh:
                mismatches.append(f"audit {audit.code}: stored total/matched/discrepancy={stored} recount={fresh}")
        return mismatches

    def handle(self, *args, **options):
        mismatches = self._check_inventory(options["part_codes"])
        if not options["part_codes"]:
            mismatches.extend(self._check_audits())

        if not mismatches:
            self.stdout.write(self.style.SUCCESS("Inventory and audit aggregates are consistent with the ledger."))
            return

        for line in mismatches:
            self.stdout.write(self.style.WARNING(f"- {line}"))
        raise CommandError(f"Found {len(mismatches)} inconsistency(ies).")
