"""
Typed view of a completed vendor form submission.

The vendor sends snake_case keys (``entry_id``, ``multi_key``); internal
callers and tests may use the camelCase names. Both are accepted.
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

JOB_ID_RE = re.compile(r"^ECS-\d{14}-\d{2,4}$")


class FieldResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    entry_id: int = Field(..., validation_alias=AliasChoices("entry_id", "entryId"))
    value: Optional[str] = None
    group_key: Optional[str] = Field(None, validation_alias=AliasChoices("multi_key", "groupKey", "group_key"))
    label: Optional[str] = None

    @field_validator("value", "group_key", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None:
            return None
        return v if isinstance(v, str) else str(v)

    @property
    def text(self) -> Optional[str]:
        """Stripped value, None when blank."""
        if self.value is None:
            return None
        v = self.value.strip()
        return v or None


class Submission(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    form_id: str = Field(..., validation_alias=AliasChoices("form_id", "formId"))
    submission_id: str = Field(..., validation_alias=AliasChoices("submission_id", "submissionId", "id"))
    submitted_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("submitted_at", "submittedAt", "created_at"))
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    responses: List[FieldResponse] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _lift_nested_form(cls, data: Any):
        # GET /submissions/{id} nests the form as {"form": {"id": ...}}
        if isinstance(data, dict) and "form_id" not in data and "formId" not in data:
            form = data.get("form")
            if isinstance(form, dict) and form.get("id") is not None:
                data = dict(data, form_id=form["id"])
        return data

    @field_validator("form_id", "submission_id", "user_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return None if v is None else str(v)

    def find_job_id(self) -> Optional[str]:
        for r in self.responses:
            if r.label and "job" in r.label.lower() and r.text and JOB_ID_RE.match(r.text):
                return r.text
        return None

    def responses_for(self, logical: str, dictionary, ungrouped_only: bool = False) -> List[FieldResponse]:
        """Responses carrying logical field ``logical`` for this form version."""
        from ..services.field_dictionary import LOGICAL_LABELS

        fid = dictionary.field_id(self.form_id, logical)
        labels = LOGICAL_LABELS.get(logical, (logical,))
        matches = []
        for r in self.responses:
            if ungrouped_only and r.group_key:
                continue
            if (fid is not None and r.entry_id == fid) or (r.label is not None and r.label in labels):
                matches.append(r)
        return matches

    def value_of(self, logical: str, dictionary) -> Optional[str]:
        """First non-blank value of ``logical`` outside any loop screen."""
        for r in self.responses_for(logical, dictionary, ungrouped_only=True):
            if r.text is not None:
                return r.text
        return None
