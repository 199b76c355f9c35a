from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    type: ChangeType
    table: str
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None

    @property
    def record(self) -> Optional[dict[str, Any]]:
        """The row the event is about: `new`, or `old` for deletes."""
        return self.old if self.type == ChangeType.DELETE else self.new
