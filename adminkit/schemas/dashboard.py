from typing import Any

from pydantic import BaseModel


class DashboardResponse(BaseModel):
    brand_name: str
    widgets: list[dict[str, Any]]
