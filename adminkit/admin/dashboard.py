"""Dashboard widget registrations. Rendering belongs to the host."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ConfigurationError

WidgetType = Literal["stat", "counter", "chart", "list", "table"]


class DashboardWidget(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    name: str = Field(..., min_length=1, max_length=100)
    title: str
    value: Any = 0
    icon: str = "chart-bar"
    color: str = "blue"
    type: WidgetType = "stat"
    # widgets are hidden from principals lacking these roles (empty = everyone)
    roles: tuple[str, ...] = ()

    def visible_to(self, role_names: frozenset[str] | set[str]) -> bool:
        return not self.roles or any(role in role_names for role in self.roles)


def build_widget(name: str, **config: Any) -> DashboardWidget:
    config.setdefault("title", name[:1].upper() + name[1:])
    try:
        return DashboardWidget(name=name, **config)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid dashboard widget '{name}': {exc}") from exc
