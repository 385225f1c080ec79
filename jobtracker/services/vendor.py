"""
Client for the mobile forms vendor API (dispatches, submissions, users).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ..config import VENDOR_BASE_URL, VENDOR_USERNAME, VENDOR_PASSWORD, VENDOR_TIMEOUT_SECONDS
from ..errors import DispatchFailed, VendorError
from ..schemas.submission import Submission
from .field_dictionary import FieldDictionary, field_dictionary
from .form_versions import FormRegistry, form_registry
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.vendor")


class FormsClient:

    def __init__(self, base_url: str = VENDOR_BASE_URL, username: str = VENDOR_USERNAME,
                 password: str = VENDOR_PASSWORD, timeout: float = VENDOR_TIMEOUT_SECONDS,
                 dictionary: FieldDictionary = field_dictionary, registry: FormRegistry = form_registry,
                 transport: Optional[httpx.BaseTransport] = None):
        self.dictionary = dictionary
        self.registry = registry
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=(username, password) if username else None,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self):
        self.client.close()

    def _request(self, method: str, path: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            prometheus_metrics.increment_vendor_request(endpoint, "error")
            raise VendorError(f"Vendor call failed for {endpoint}: {e}", {"endpoint": endpoint}) from e
        prometheus_metrics.increment_vendor_request(endpoint, resp.status_code)
        remaining = resp.headers.get("X-RateLimit-Remaining")
        if remaining is not None and remaining.isdigit():
            prometheus_metrics.set_vendor_rate_limit_remaining(int(remaining))
        return resp

    # Dispatches

    def build_responses(self, form_id: str, fields: Dict[str, Any],
                        loop_rows: Iterable[Dict[str, Any]] = ()) -> List[Dict[str, Any]]:
        """Prefill entries for a dispatch. Fields the form does not carry are dropped."""
        out = []
        for logical, value in fields.items():
            if value is None or value == "":
                continue
            fid = self.dictionary.field_id(form_id, logical)
            if fid is None:
                logger.debug("Form has no field for prefill", extra={
                    "component": "vendor", "form_id": form_id, "field": logical})
                continue
            out.append({"entry_id": fid, "value": str(value)})
        for row in loop_rows:
            serial = row.get("ecs_serial")
            if not serial:
                continue
            for logical, value in row.items():
                if value is None or value == "":
                    continue
                fid = self.dictionary.field_id(form_id, logical)
                if fid is not None:
                    out.append({"entry_id": fid, "value": str(value), "multi_key": serial})
        return out

    def create_dispatch(self, form_type: str, fields: Dict[str, Any], assignee_email: Optional[str],
                        loop_rows: Iterable[Dict[str, Any]] = (), name: Optional[str] = None,
                        description: Optional[str] = None) -> str:
        """Assign a prefilled form to someone. Returns the vendor dispatch id.

        Raises ``DispatchFailed`` for any transport failure, non-2xx status
        or a body without an id.
        """
        form_id = self.registry.current_form_id(form_type)
        assignee_id = self.get_user_id(assignee_email) if assignee_email else None
        if assignee_email and assignee_id is None:
            logger.warning("No vendor user for assignee, dispatch will be unassigned", extra={
                "component": "vendor", "assignee": assignee_email, "form_type": form_type})

        payload = {
            "dispatch_type": "immediate_dispatch",
            "form_id": int(form_id),
            "name": name or f"{form_type.title()} {fields.get('job_id', '')}".strip(),
            "description": description or "",
            "responses": self.build_responses(form_id, fields, loop_rows),
            "send_notification": True,
        }
        if assignee_id is not None:
            payload["assignee_id"] = assignee_id

        try:
            resp = self._request("POST", "/dispatches", "dispatches", json=payload)
        except VendorError as e:
            raise DispatchFailed(f"Vendor call failed for {form_type} dispatch: {e.message}", leg=form_type) from e

        if resp.status_code < 200 or resp.status_code >= 300:
            body = resp.text[:500]
            logger.error("Vendor rejected dispatch", extra={
                "component": "vendor", "form_type": form_type, "status": resp.status_code, "body": body})
            raise DispatchFailed(f"Vendor rejected {form_type} dispatch (HTTP {resp.status_code})",
                                 leg=form_type, vendor_status=resp.status_code, vendor_body=body)
        try:
            data = resp.json()
        except ValueError:
            data = None
        dispatch_id = data.get("id") if isinstance(data, dict) else None
        if dispatch_id in (None, ""):
            raise DispatchFailed(f"Vendor rejected {form_type} dispatch: response carried no dispatch id",
                                 leg=form_type, vendor_status=resp.status_code, vendor_body=resp.text[:500])
        logger.info("Dispatch created", extra={
            "component": "vendor", "form_type": form_type, "dispatch_id": str(dispatch_id)})
        return str(dispatch_id)

    # Users

    def get_user_id(self, email: str) -> Optional[str]:
        try:
            resp = self._request("GET", "/users", "users")
        except VendorError as e:
            logger.warning(f"User lookup failed: {e.message}", extra={"component": "vendor"})
            return None
        if resp.status_code != 200:
            return None
        try:
            users = resp.json()
        except ValueError:
            logger.warning("User listing was not JSON", extra={
                "component": "vendor", "body": resp.text[:200]})
            return None
        if isinstance(users, dict):
            users = users.get("users", [])
        wanted = email.strip().lower()
        for u in users:
            if str(u.get("email", "")).lower() == wanted or str(u.get("login", "")).lower() == wanted:
                return str(u.get("id"))
        return None

    def get_user(self, user_id: str) -> Dict[str, Any]:
        resp = self._request("GET", f"/users/{user_id}", "users")
        if resp.status_code != 200:
            raise VendorError(f"User {user_id} lookup returned HTTP {resp.status_code}",
                              {"user_id": user_id, "vendor_status": resp.status_code})
        try:
            return resp.json()
        except ValueError as e:
            raise VendorError(f"User {user_id} lookup returned a non-JSON body", {"user_id": user_id}) from e

    def display_name(self, user_id: Optional[str]) -> Optional[str]:
        """``First Last`` for a vendor user, None when unknown."""
        if not user_id:
            return None
        try:
            user = self.get_user(user_id)
        except VendorError as e:
            logger.warning(f"Display name lookup failed: {e.message}", extra={"component": "vendor"})
            return None
        name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
        return name or None

    # Submissions

    def get_submission(self, submission_id: str) -> Submission:
        resp = self._request("GET", f"/submissions/{submission_id}", "submissions")
        if resp.status_code != 200:
            raise VendorError(f"Submission {submission_id} fetch returned HTTP {resp.status_code}",
                              {"submission_id": submission_id, "vendor_status": resp.status_code})
        return Submission.model_validate(resp.json())

    def find_submission_for_job(self, form_type: str, job_id: str) -> Optional[Submission]:
        """Latest completed submission of ``form_type`` that names ``job_id``."""
        found = []
        for form_id in self.registry.all_form_ids(form_type):
            resp = self._request("GET", "/submissions", "submissions",
                                 params={"form_id": form_id, "status": "completed"})
            if resp.status_code != 200:
                raise VendorError(f"Submission search returned HTTP {resp.status_code}",
                                  {"form_id": form_id, "vendor_status": resp.status_code})
            items = resp.json()
            if isinstance(items, dict):
                items = items.get("submissions", [])
            for item in items:
                item = dict(item)
                item.setdefault("form_id", form_id)
                if item.get("responses"):
                    sub = Submission.model_validate(item)
                else:
                    # listings may come back without responses
                    sub = self.get_submission(str(item.get("id")))
                if sub.find_job_id() == job_id:
                    found.append(sub)
        if not found:
            return None
        dated = [s for s in found if s.submitted_at is not None]
        if dated:
            return max(dated, key=lambda s: s.submitted_at)
        return found[0]
