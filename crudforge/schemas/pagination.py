from pydantic import BaseModel, ConfigDict
from typing import Any, Callable, List, Optional, Union


class _Page(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: List[Any] = []
    per_page: int

    def _meta(self) -> dict:
        return self.model_dump(exclude={"items"})

    def to_payload(self, serialize: Callable[[Any], Any]) -> dict:
        return {"data": [serialize(item) for item in self.items], "meta": self._meta()}


class LengthAwarePage(_Page):
    total: int
    current_page: int
    last_page: int


class SimplePage(_Page):
    current_page: int
    has_more: bool


class CursorPage(_Page):
    cursor_column: str
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None


PageResult = Union[LengthAwarePage, SimplePage, CursorPage]
