"""
Vendor form versions.

The vendor rebuilds a form with a brand-new id whenever it is edited, so each
logical form type keeps its current id plus a rolling history of older ids.
Submissions against any known id are still accepted.
"""

import threading
from typing import Dict, List, Optional

from ..errors import UnknownFormType

PICKUP = "pickup"
SERVICE = "service"
DELIVERY = "delivery"

FORM_TYPES = (PICKUP, SERVICE, DELIVERY)

MAX_FORM_HISTORY = 20

# Loop-screen group key encodings
SERIAL_KEY = "serial"
PART_NAME_KEY = "part_name"

DEFAULT_VERSIONS = {
    SERVICE: {"current": "5716092", "history": ["5695685"]},
    PICKUP: {"current": "5657148", "history": ["5640587"]},
    DELIVERY: {"current": "5714828", "history": ["5657146"]},
}

# Forms built before the loop key became the ECS serial
DEFAULT_ENCODINGS = {
    "5695685": PART_NAME_KEY,
}


class FormRegistry:

    def __init__(self, versions: Optional[Dict[str, Dict]] = None,
                 encodings: Optional[Dict[str, str]] = None):
        source = versions or DEFAULT_VERSIONS
        self._versions = {k: {"current": v["current"], "history": list(v["history"])} for k, v in source.items()}
        self._encodings = dict(DEFAULT_ENCODINGS if encodings is None else encodings)
        self._lock = threading.Lock()

    def current_form_id(self, form_type: str) -> str:
        return self._versions[form_type]["current"]

    def all_form_ids(self, form_type: str) -> List[str]:
        v = self._versions[form_type]
        return [v["current"]] + list(v["history"])

    def all_known_form_ids(self) -> List[str]:
        ids = []
        for form_type in self._versions:
            ids.extend(self.all_form_ids(form_type))
        return ids

    def form_type_for(self, form_id) -> Optional[str]:
        form_id = str(form_id)
        for form_type in self._versions:
            if form_id in self.all_form_ids(form_type):
                return form_type
        return None

    def require_form_type(self, form_id) -> str:
        form_type = self.form_type_for(form_id)
        if form_type is None:
            raise UnknownFormType(str(form_id))
        return form_type

    def group_key_encoding(self, form_id) -> str:
        return self._encodings.get(str(form_id), SERIAL_KEY)

    def remap(self, form_type: str, new_form_id: str, encoding: str = SERIAL_KEY) -> None:
        """Make ``new_form_id`` current, pushing the old id onto the history."""
        with self._lock:
            v = self._versions[form_type]
            if v["current"] == new_form_id:
                return
            history = [v["current"]] + [f for f in v["history"] if f != new_form_id]
            v["history"] = history[:MAX_FORM_HISTORY]
            v["current"] = new_form_id
            self._encodings[new_form_id] = encoding


form_registry = FormRegistry()
