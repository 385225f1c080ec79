"""
Logical field names to vendor field ids.

Field maps are exported from the vendor's form definition and shipped as
``field_map_<form_id>.json``. A lookup that misses in the requested form
version falls back to the other versions of the same logical form, current
first, so a partially stale map degrades to "best known id" instead of
failing outright.
"""

import json
import logging
import os
import threading
from typing import Dict, List, Optional, Tuple

from ..config import FIELD_MAP_DIR
from ..errors import FieldMapError
from .form_versions import FormRegistry, form_registry

logger = logging.getLogger("jobtracker.field_dictionary")

# logical name -> candidate vendor labels, first match wins
LOGICAL_LABELS: Dict[str, Tuple[str, ...]] = {
    "job_id": ("Job ID",),
    "customer_name": ("Customer Name",),
    "shop_name": ("Shop Name",),
    "contact_name": ("Contact Name",),
    "contact_number": ("Contact Number",),
    "customer_ship_to": ("Customer Ship To",),
    "customer_instructions": ("Customer Instructions",),
    "shop_handoff": ("Shop Handoff",),
    "pickup_address": ("Pickup Address",),
    "delivery_address": ("Delivery Address",),
    "driver_instructions": ("Notes to Driver",),
    "order_number": ("Order Number",),
    "order_number_2": ("Order Number 2",),
    "order_number_3": ("Order Number 3",),
    "order_number_4": ("Order Number 4",),
    "order_number_5": ("Order Number 5",),
    "item_count": ("Item Count",),
    "driver_notes": ("Driver Notes",),
    "delivered_to": ("Delivered To",),
    "gps": ("New GPS", "GPS"),
    "handoff_date": ("Handoff Date",),
    "handoff_time": ("Handoff Time",),
    "additional_comments": ("Additional Comments",),
    # loop screen
    "part": ("Part",),
    "process": ("Process Being Performed",),
    "ecs_serial": ("ECS Serial Number",),
    "filter_pn": ("Filter Part Number",),
    "po_number": ("PO Number",),
    "mileage": ("Mileage",),
    "unit_vin": ("Unit / Vin Number",),
    "gasket_clamps": ("Gasket or Clamps",),
    "ec": ("EC",),
    "eg": ("EG",),
    "ek": ("EK",),
    "ecs_part_number": ("ECS Part Number",),
    "pass_or_fail": ("Did the Part Pass or Fail?",),
    "require_repairs": ("Did the Part Require Repairs?",),
    "failed_reason": ("Failed Reason",),
    "repairs_performed": ("Which Repairs Were Performed",),
}

PART_LOGICAL_FIELDS = (
    "part", "process", "ecs_serial", "filter_pn", "po_number", "mileage", "unit_vin",
    "gasket_clamps", "ec", "eg", "ek", "ecs_part_number", "pass_or_fail",
    "require_repairs", "failed_reason", "repairs_performed",
)


class FieldDictionary:

    def __init__(self, map_dir: str = FIELD_MAP_DIR, registry: FormRegistry = form_registry):
        self.map_dir = map_dir
        self.registry = registry
        self._maps: Dict[str, Optional[dict]] = {}
        self._lock = threading.Lock()

    def load(self, form_id) -> Optional[dict]:
        """Parsed field map for ``form_id`` or None when no map is shipped."""
        form_id = str(form_id)
        with self._lock:
            if form_id in self._maps:
                return self._maps[form_id]
            path = os.path.join(self.map_dir, f"field_map_{form_id}.json")
            data = None
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict) or "entries" not in data:
                    raise FieldMapError(f"Invalid field map structure in {path}")
                data["_by_label"] = {}
                data["_by_id"] = {}
                for entry in data["entries"]:
                    data["_by_label"].setdefault(entry["label"], int(entry["id"]))
                    data["_by_id"][int(entry["id"])] = entry["label"]
            else:
                logger.warning("No field map for form", extra={"component": "field_dictionary", "form_id": form_id})
            self._maps[form_id] = data
            return data

    def _search_order(self, form_id: str) -> List[str]:
        form_id = str(form_id)
        form_type = self.registry.form_type_for(form_id)
        if form_type is None:
            return [form_id]
        return [form_id] + [f for f in self.registry.all_form_ids(form_type) if f != form_id]

    def field_id(self, form_id, logical: str) -> Optional[int]:
        labels = LOGICAL_LABELS.get(logical, (logical,))
        order = self._search_order(form_id)
        for candidate in order:
            fmap = self.load(candidate)
            if not fmap:
                continue
            for label in labels:
                found = fmap["_by_label"].get(label)
                if found is not None:
                    if candidate != str(form_id):
                        logger.info("Field resolved from another form version", extra={
                            "component": "field_dictionary", "form_id": str(form_id),
                            "resolved_from": candidate, "field": logical})
                    return found
        return None

    def logical_name(self, form_id, entry_id) -> Optional[str]:
        """Reverse lookup: vendor entry id -> logical field name."""
        try:
            entry_id = int(entry_id)
        except (TypeError, ValueError):
            return None
        for candidate in self._search_order(form_id):
            fmap = self.load(candidate)
            if not fmap:
                continue
            label = fmap["_by_id"].get(entry_id)
            if label is None:
                continue
            for logical, labels in LOGICAL_LABELS.items():
                if label in labels:
                    return logical
            return None
        return None

    def parts_field_ids(self, form_id) -> Dict[str, int]:
        ids = {}
        missing = []
        for logical in PART_LOGICAL_FIELDS:
            fid = self.field_id(form_id, logical)
            if fid is None:
                missing.append(LOGICAL_LABELS[logical][0])
            else:
                ids[logical] = fid
        if missing:
            raise FieldMapError(f"Form {form_id} is missing part fields: {', '.join(missing)}",
                                {"form_id": str(form_id), "missing": missing})
        return ids

    def label_to_id(self, form_id) -> Dict[str, int]:
        fmap = self.load(form_id)
        if not fmap:
            raise FieldMapError(f"No field map for form {form_id}", {"form_id": str(form_id)})
        return dict(fmap["_by_label"])


field_dictionary = FieldDictionary()
