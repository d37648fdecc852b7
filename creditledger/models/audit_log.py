from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from creditledger.models.account import new_id


class AuditEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    actor_id: str | None = None  # optional for system events
    event_type: str
    entity_type: str
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
