from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, model_validator

from fleetdesk.core.time import ensure_utc


class QuoteRequest(BaseModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    package_ids: List[int] = Field(default_factory=list)
    selected_custom_cost_ids: List[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_period(self):
        if ensure_utc(self.end_date) <= ensure_utc(self.start_date):
            raise ValueError("End date must be after start date")
        return self
