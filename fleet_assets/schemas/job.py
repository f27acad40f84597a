from datetime import datetime

from pydantic import BaseModel


class RecalculationJobResponse(BaseModel):
    id: str
    organization_id: str
    asset_id: str
    upload_id: str | None
    status: str
    attempts: int
    last_error: str | None
    created_at: datetime
    finished_at: datetime | None

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    queued: int
