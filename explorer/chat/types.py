from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ChatRole = Literal["user", "assistant"]
ToolStatus = Literal["running", "completed", "error"]


class ChatMessage(BaseModel):
    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)


@dataclass
class ToolInvocation:
    """
    One tool call requested by the model.

    Starts `running` and moves exactly once to `completed` or `error`.
    """

    id: str
    name: str
    parameters: Dict[str, Any]
    status: ToolStatus = "running"
    result_summary: Optional[str] = None
    error: Optional[str] = None
    schools: List[Dict[str, str]] = field(default_factory=list)

    def _check_running(self) -> None:
        if self.status != "running":
            raise RuntimeError(f"tool invocation {self.id} already {self.status}")

    def complete(self, summary: str, schools: Optional[List[Dict[str, str]]] = None) -> None:
        self._check_running()
        self.status = "completed"
        self.result_summary = summary
        self.schools = list(schools or [])

    def fail(self, error: str) -> None:
        self._check_running()
        self.status = "error"
        self.error = error

    def for_audit(self) -> Dict[str, Any]:
        return {"name": self.name, "parameters": self.parameters}


class FlagRequest(BaseModel):
    """User report that an assistant response was wrong or harmful."""

    model_config = ConfigDict(extra="ignore")

    user_query: str = ""
    assistant_response: str = ""
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    evaluation: Optional[Dict[str, Any]] = None
    feedback: str = ""

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _tool_calls_default(cls, v: Any) -> Any:
        return [] if v is None else v
