"""Credit ledger entry model. Entries are append-only."""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    event_type: Literal["SPEND", "GRANT"]
    service_key: Optional[str] = None
    amount: int
    balance_after: int
    request_id: Optional[str] = None
    metadata: Optional[dict] = None
    created_at: datetime
