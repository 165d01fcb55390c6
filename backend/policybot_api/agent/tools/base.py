from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Type

from pydantic import BaseModel


ToolRisk = Literal["safe", "dangerous"]


@dataclass(frozen=True)
class ToolContext:
    session_id: str | None
    category_ids: tuple[int, ...]
    user: str | None = None


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    risk: ToolRisk
    input_model: Type[BaseModel]
    handler: Callable[[BaseModel, ToolContext], Awaitable[Any]]
    parameters_schema: dict[str, Any]
