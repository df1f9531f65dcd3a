"""Pydantic models for visitor endpoints and stored visitor requests."""

from __future__ import annotations

import json
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.time import iso_utc, parse_ts


class VisitorStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


DECISIONS = frozenset({VisitorStatus.APPROVED, VisitorStatus.REJECTED})


class VisitorRegistration(BaseModel):
    """Identity details submitted by a visitor.

    Every field defaults to an empty string so that missing values can be
    reported together instead of failing on the first one. Camel-case
    aliases match the payloads sent by the browser form.
    """

    name: str = ""
    mobile: str = ""
    email: str = ""
    national_id: str = Field("", alias="aadhar")
    purpose: str = ""
    to_meet: str = Field("", alias="toMeet")
    host_email: str = Field("", alias="hostEmail")
    photo: str = ""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, value):
        if value is None:
            return ""
        # phone and ID inputs often arrive as JSON numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value.strip() if isinstance(value, str) else value


class RegistrationRequiredFields(BaseModel):
    """Fields every registration must carry."""

    name: str
    mobile: str
    national_id: str
    purpose: str
    photo: str

    @field_validator("name", "mobile", "national_id", "purpose", "photo")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    model_config = ConfigDict(extra="ignore")


class VisitorRequest(BaseModel):
    """Stored visitor request.

    Timestamps are UNIX seconds. ``decision_at`` is set only for approved or
    rejected requests and ``approved_by`` only for approved ones.
    """

    id: str
    name: str
    mobile: str
    email: str = ""
    national_id: str
    purpose: str
    to_meet: str = ""
    host_email: str = ""
    photo: str
    visitor_code: str
    qr_code: str
    qr_payload: str = ""
    decision_token: str
    token_expires_at: float
    expires_at: float
    status: VisitorStatus = VisitorStatus.PENDING
    created_at: float
    decision_at: Optional[float] = None
    approved_by: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == VisitorStatus.PENDING

    def to_redis(self) -> dict[str, str]:
        """Return a flat mapping suitable for ``HSET``."""
        data = self.model_dump(mode="json")
        return {k: "" if v is None else str(v) for k, v in data.items()}

    @classmethod
    def from_redis(cls, data: dict[str, str]) -> "VisitorRequest":
        item = dict(data)
        for field in ("token_expires_at", "expires_at", "created_at", "decision_at"):
            item[field] = parse_ts(item.get(field))
        if not item.get("approved_by"):
            item["approved_by"] = None
        return cls(**item)

    def public_dict(self) -> dict:
        """Return the record for API responses, without the decision token."""
        data = self.model_dump(mode="json", exclude={"decision_token"})
        for field in ("token_expires_at", "expires_at", "created_at", "decision_at"):
            value = getattr(self, field)
            data[field] = iso_utc(value) if value is not None else None
        return data

    def qr_data(self) -> dict:
        return json.loads(self.qr_payload) if self.qr_payload else {}


class RegistrationResponse(BaseModel):
    id: str
    status: VisitorStatus
    visitor_code: str
    expires_at: str
    qr_code: str


class DecisionResponse(BaseModel):
    id: str
    status: VisitorStatus
    decision_at: Optional[str] = None
    approved_by: Optional[str] = None
