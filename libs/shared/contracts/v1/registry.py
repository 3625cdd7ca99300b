from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CollaboratorRecord(BaseModel):
    """One peer advertised in the registry document.

    On disk the identity is the document key and the record body uses camelCase:
    ``{"Merchant": {"agentId": "...", "planId": "...", "role": "merchant"}}``.
    """

    model_config = ConfigDict(populate_by_name=True)

    identity: str
    agent_id: str = Field(alias="agentId")
    plan_id: str = Field(alias="planId")
    role: str = "merchant"

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"identity"})

    @classmethod
    def from_document(cls, identity: str, body: dict[str, Any]) -> CollaboratorRecord:
        return cls.model_validate({**body, "identity": identity})
