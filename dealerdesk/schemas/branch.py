"""
schemas/branch.py
-----------------
Pydantic models for Branch requests/responses and the branch team roster.

Team roster rules:
  - Categories are fixed: executives, mechanics, callboys, staff
    ("executive" and "mechanic" are accepted as input aliases).
  - A category accepts a list or a newline/comma/semicolon separated string.
  - An entry is either "Name | phone" / "Name: phone" or an object with
    name|value and phone|contact|mobile.
  - Phones keep digits only; entries are deduplicated case-insensitively by
    name, first seen wins, order preserved.
  - Empty categories are omitted when serialized.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)

from dealerdesk.models.branch import Branch, BranchStatus, BranchType

TEAM_KEYS = ("executives", "mechanics", "callboys", "staff")
TEAM_KEY_ALIASES = {"executives": "executive", "mechanics": "mechanic"}

_LIST_SEPARATORS = re.compile(r"[\n,;]+")
_ENTRY_SEPARATORS = re.compile(r"[|:]")
_NON_DIGITS = re.compile(r"\D")


class TeamEntry(BaseModel):
    name: str
    phone: Optional[str] = None

    @model_serializer
    def _serialize(self) -> Dict[str, str]:
        data = {"name": self.name}
        if self.phone:
            data["phone"] = self.phone
        return data


def parse_team_entry(entry: Any) -> Optional[TeamEntry]:
    if not entry:
        return None
    if isinstance(entry, TeamEntry):
        return entry
    if isinstance(entry, dict):
        name = str(entry.get("name") or entry.get("value") or "").strip()
        if not name:
            return None
        raw_phone = entry.get("phone") or entry.get("contact") or entry.get("mobile") or ""
        phone = _NON_DIGITS.sub("", str(raw_phone))
        return TeamEntry(name=name, phone=phone or None)

    parts = [p.strip() for p in _ENTRY_SEPARATORS.split(str(entry).strip())]
    parts = [p for p in parts if p]
    if not parts:
        return None
    phone = _NON_DIGITS.sub("", "".join(parts[1:]))
    return TeamEntry(name=parts[0], phone=phone or None)


def normalize_team_list(value: Any) -> List[TeamEntry]:
    if not value:
        return []
    raw_entries = value if isinstance(value, (list, tuple)) else _LIST_SEPARATORS.split(str(value))

    seen: Dict[str, TeamEntry] = {}
    for raw in raw_entries:
        entry = parse_team_entry(raw)
        if entry is None:
            continue
        seen.setdefault(entry.name.lower(), entry)
    return list(seen.values())


class Team(BaseModel):
    executives: List[TeamEntry] = Field(default_factory=list)
    mechanics: List[TeamEntry] = Field(default_factory=list)
    callboys: List[TeamEntry] = Field(default_factory=list)
    staff: List[TeamEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, Team):
            return data
        if not isinstance(data, dict):
            data = {}
        normalized = {}
        for key in TEAM_KEYS:
            raw = data.get(key) or data.get(TEAM_KEY_ALIASES.get(key, key))
            normalized[key] = normalize_team_list(raw)
        return normalized

    @model_serializer
    def _serialize(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            key: [entry.model_dump() for entry in getattr(self, key)]
            for key in TEAM_KEYS
            if getattr(self, key)
        }

    def is_empty(self) -> bool:
        return not any(getattr(self, key) for key in TEAM_KEYS)


def merge_team_input(data: Dict[str, Any]) -> Dict[str, Any]:
    """Top-level category fields on a branch body override those under `team`."""
    team = data.get("team")
    merged = dict(team) if isinstance(team, dict) else {}
    for key in TEAM_KEYS:
        if data.get(key) is not None:
            merged[key] = data[key]
    return merged


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ── Requests ──────────────────────────────────────────────────────────────────

class BranchCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = ""
    name: str = ""
    type: BranchType = BranchType.sales_and_services
    status: BranchStatus = BranchStatus.active
    team: Team = Field(default_factory=Team)
    tenant_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("ownerId", "tenantId", "tenant_id")
    )
    request_reason: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("requestReason", "request_reason")
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_team(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {**data, "team": merge_team_input(data)}
        return data

    @field_validator("code", "name", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> BranchType:
        return BranchType.normalize(v)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> BranchStatus:
        return BranchStatus.normalize(v)

    @field_validator("tenant_id", mode="before")
    @classmethod
    def _blank_tenant(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("request_reason", mode="before")
    @classmethod
    def _strip_reason(cls, v: Any) -> Optional[str]:
        text = str(v or "").strip()
        return text or None

    @model_validator(mode="after")
    def _require_code_and_name(self) -> "BranchCreate":
        self.code = self.code.upper()
        if not self.code or not self.name:
            raise ValueError("code and name are required")
        return self


class BranchUpdate(BaseModel):
    """Partial update: only truthy fields change; an empty team is ignored."""

    code: Optional[str] = None
    name: Optional[str] = None
    type: Optional[BranchType] = None
    status: Optional[BranchStatus] = None
    team: Optional[Team] = None

    @model_validator(mode="before")
    @classmethod
    def _merge_team(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {**data, "team": merge_team_input(data)}
        return data

    @field_validator("code", mode="before")
    @classmethod
    def _normalize_code(cls, v: Any) -> Optional[str]:
        text = str(v or "").strip().upper()
        return text or None

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, v: Any) -> Optional[str]:
        text = str(v or "").strip()
        return text or None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> Optional[BranchType]:
        return BranchType.normalize(v) if v else None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> Optional[BranchStatus]:
        return BranchStatus.normalize(v) if v else None

    @field_validator("team", mode="after")
    @classmethod
    def _drop_empty_team(cls, v: Optional[Team]) -> Optional[Team]:
        if v is None or v.is_empty():
            return None
        return v


# ── Responses ─────────────────────────────────────────────────────────────────

class BranchRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    tenant_id: int = Field(alias="ownerId")
    code: str
    name: str
    type: str
    status: str
    team: Team = Field(default_factory=Team)

    @classmethod
    def from_model(cls, branch: Branch) -> "BranchRead":
        return cls(
            id=branch.id,
            tenant_id=branch.tenant_id,
            code=branch.code,
            name=branch.name,
            type=branch.type,
            status=branch.status,
            team=Team.model_validate(branch.team or {}),
        )
