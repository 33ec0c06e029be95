"""
Option catalog models: per-session selectable options (model, sub-agent).
"""

from typing import Optional
from pydantic import BaseModel, Field


class OptionItem(BaseModel):
    id: str
    name: str = ""


class OptionGroup(BaseModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    items: list[OptionItem] = Field(default_factory=list)

    def find(self, item_id: str) -> Optional[OptionItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


class OptionUpdate(BaseModel):
    """A single option change. ``value=None`` unsets the group."""
    group_id: str
    value: Optional[str] = None
