"""
Parts reconciliation.

The service form has a loop screen, one repetition per physical part. The
vendor flattens it into a single response array where each response carries a
``group_key`` naming its repetition. Grouping rebuilds one record per part;
reconciliation then merges each record into ``job_parts`` field by field.

Two group-key encodings exist in the wild:

* current forms use the ECS serial as the group key (``SerialKeyGrouper``);
* older forms used the part name, so two identical parts shared a key and
  have to be split positionally (``PositionalSliceGrouper``).
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, NamedTuple, Optional

from .field_dictionary import FieldDictionary, field_dictionary
from .form_versions import FormRegistry, form_registry, PART_NAME_KEY
from .prometheus_metrics import prometheus_metrics
from ..schemas.submission import FieldResponse

logger = logging.getLogger("jobtracker.parts")


def normalize_value(logical: str, value: Optional[str]) -> Optional[str]:
    """Incoming value as stored, or None when the field is effectively absent."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if logical == "repairs_performed":
        items = [line.strip() for line in value.splitlines() if line.strip()]
        return ", ".join(items) or None
    return value


class PartRecord:
    """One part's worth of loop-screen values."""

    def __init__(self, serial: Optional[str] = None, group_key: Optional[str] = None):
        self.serial = serial
        self.group_key = group_key
        self.fields: Dict[str, str] = {}

    def assign(self, logical: str, value: Optional[str]):
        value = normalize_value(logical, value)
        if value is not None:
            self.fields[logical] = value

    @property
    def part_name(self) -> Optional[str]:
        return self.fields.get("part")

    def __repr__(self):
        return f"PartRecord(serial={self.serial!r}, fields={self.fields!r})"


class PartGrouper(ABC):

    def __init__(self, dictionary: FieldDictionary = field_dictionary):
        self.dictionary = dictionary

    def _ids(self, form_id):
        ids = self.dictionary.parts_field_ids(form_id)
        return ids, {fid: logical for logical, fid in ids.items()}

    @abstractmethod
    def group(self, responses: List[FieldResponse], form_id) -> List[PartRecord]:
        pass


class SerialKeyGrouper(PartGrouper):
    """Group key is the ECS serial."""

    def group(self, responses, form_id):
        ids, by_id = self._ids(form_id)
        serial_id = ids["ecs_serial"]
        records: "OrderedDict[str, PartRecord]" = OrderedDict()

        for r in responses:
            if not r.group_key:
                # the loop's title column: its value is the serial itself
                if r.entry_id == serial_id and r.text:
                    records.setdefault(r.text, PartRecord(serial=r.text, group_key=r.text))
                continue
            key = r.group_key.strip()
            rec = records.setdefault(key, PartRecord(serial=key, group_key=key))
            logical = by_id.get(r.entry_id)
            if logical is None or logical == "ecs_serial":
                continue
            rec.assign(logical, r.value)

        return list(records.values())


class PositionalSliceGrouper(PartGrouper):
    """Group key is the part name; repeated names are split into equal slices."""

    def group(self, responses, form_id):
        ids, by_id = self._ids(form_id)
        serial_id = ids["ecs_serial"]

        groups: "OrderedDict[str, List[FieldResponse]]" = OrderedDict()
        for r in responses:
            if r.group_key:
                groups.setdefault(r.group_key.strip(), []).append(r)

        records: List[PartRecord] = []
        for name, members in groups.items():
            serial_positions = [i for i, r in enumerate(members) if r.entry_id == serial_id and r.text]
            count = max(len(serial_positions), 1)
            size = len(members) / count
            for n in range(count):
                start = int(round(n * size))
                end = len(members) if n == count - 1 else int(round((n + 1) * size))
                chunk = members[start:end]
                in_chunk = [members[p].text for p in serial_positions if start <= p < end]
                if len(in_chunk) == 1:
                    serial = in_chunk[0]
                elif serial_positions:
                    serial = members[serial_positions[n]].text
                else:
                    serial = None
                rec = PartRecord(serial=serial, group_key=name)
                for r in chunk:
                    logical = by_id.get(r.entry_id)
                    if logical is None or logical == "ecs_serial":
                        continue
                    rec.assign(logical, r.value)
                if "part" not in rec.fields:
                    rec.fields["part"] = name
                records.append(rec)
            if len(serial_positions) > 1:
                logger.info("Split repeated loop group positionally", extra={
                    "component": "parts", "group_key": name, "parts": count, "fields": len(members)})

        return records


def grouper_for(form_id, dictionary: FieldDictionary = field_dictionary,
                registry: FormRegistry = form_registry) -> PartGrouper:
    if registry.group_key_encoding(form_id) == PART_NAME_KEY:
        return PositionalSliceGrouper(dictionary)
    return SerialKeyGrouper(dictionary)


class ReconcileResult(NamedTuple):
    created: int
    updated: int
    unchanged: int
    matched_by_name: int


def reconcile_parts(store, job_id: str, responses: List[FieldResponse], form_id,
                    dictionary: FieldDictionary = field_dictionary,
                    registry: FormRegistry = form_registry) -> ReconcileResult:
    """Merge the submission's loop-screen parts into the job's part rows.

    Parts match on (job, serial). A record with no serial falls back to a
    serial-less row with the same part name. Only non-blank incoming fields
    are written, so values the payload leaves out are kept.
    """
    records = grouper_for(form_id, dictionary, registry).group(responses, form_id)
    if not records:
        logger.info("No parts in submission", extra={"component": "parts", "job_id": job_id})
        return ReconcileResult(0, 0, 0, 0)

    existing = store.list_parts(job_id)
    by_serial = {p.ecs_serial: p for p in existing if p.ecs_serial}
    created = updated = unchanged = by_name = 0

    for rec in records:
        current = None
        if rec.serial:
            current = by_serial.get(rec.serial)
        elif rec.part_name:
            current = next((p for p in existing if not p.ecs_serial and p.part == rec.part_name), None)
            by_name += 1
            logger.warning("Part has no serial, matched by name", extra={
                "component": "parts", "job_id": job_id, "part": rec.part_name, "matched": current is not None})
        else:
            logger.warning("Skipping loop record with neither serial nor part name", extra={
                "component": "parts", "job_id": job_id, "group_key": rec.group_key})
            continue

        if current is not None:
            changes = {k: v for k, v in rec.fields.items() if getattr(current, k) != v}
            if changes:
                current = store.update_part(current.id, changes)
                updated += 1
            else:
                unchanged += 1
        else:
            fields = dict(rec.fields, ecs_serial=rec.serial)
            current = store.create_part(job_id, fields)
            existing.append(current)
            created += 1
            logger.info("Created part from submission", extra={
                "component": "parts", "job_id": job_id, "ecs_serial": rec.serial, "part": rec.part_name})
        if rec.serial:
            by_serial[rec.serial] = current

    prometheus_metrics.increment_parts_reconciled("created", created)
    prometheus_metrics.increment_parts_reconciled("updated", updated)
    logger.info("Parts reconciled", extra={
        "component": "parts", "job_id": job_id, "parts_created": created, "updated": updated, "unchanged": unchanged})
    return ReconcileResult(created, updated, unchanged, by_name)
