from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml
from pydantic import ValidationError

from explorer.tools.handlers import HANDLERS, ToolHandler

logger = logging.getLogger(__name__)

_DESCRIPTORS_PATH = Path(__file__).resolve().parent / "descriptors.yaml"


class ToolNotFound(LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolParameterError(ValueError):
    """Tool parameters failed validation."""


class RegistryError(RuntimeError):
    """Descriptor list and handler table disagree."""


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: Mapping[str, Any]

    def schema(self) -> Dict[str, Any]:
        return copy.deepcopy(dict(self.parameters))

    def for_model(self) -> Dict[str, Any]:
        """Tool spec in the function-calling shape accepted by LangChain `bind_tools`."""
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": self.schema()},
        }

    def for_mcp(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.schema()}


def load_descriptors(path: Optional[Path] = None) -> List[ToolDescriptor]:
    p = path or _DESCRIPTORS_PATH
    with open(p, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    items = doc.get("tools") if isinstance(doc, dict) else None
    if not isinstance(items, list):
        raise RegistryError(f"descriptor file has no 'tools' list: {p}")

    out: List[ToolDescriptor] = []
    for item in items:
        if not isinstance(item, dict):
            raise RegistryError("descriptor entries must be mappings")
        name = str(item.get("name") or "").strip()
        if not name:
            raise RegistryError("descriptor without a name")
        params = item.get("parameters") or {"type": "object", "properties": {}}
        if not isinstance(params, dict) or params.get("type") != "object":
            raise RegistryError(f"descriptor {name}: parameters must be an object schema")
        out.append(
            ToolDescriptor(
                name=name,
                description=str(item.get("description") or "").strip(),
                parameters=MappingProxyType(copy.deepcopy(params)),
            )
        )
    return out


class ToolRegistry:
    """
    Closed set of tools: descriptors plus the name -> handler table.

    Construction fails unless every descriptor has exactly one handler and vice versa,
    so the set cannot drift at runtime.
    """

    def __init__(self, descriptors: Sequence[ToolDescriptor], handlers: Mapping[str, ToolHandler]):
        names = [d.name for d in descriptors]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise RegistryError(f"duplicate tool descriptors: {', '.join(dupes)}")
        missing = sorted(set(names) - set(handlers))
        extra = sorted(set(handlers) - set(names))
        if missing or extra:
            raise RegistryError(
                f"tool table mismatch: descriptors without handler={missing or '[]'}, handlers without descriptor={extra or '[]'}"
            )
        self._descriptors: Tuple[ToolDescriptor, ...] = tuple(descriptors)
        self._by_name: Mapping[str, ToolDescriptor] = MappingProxyType({d.name: d for d in descriptors})
        self._handlers: Mapping[str, ToolHandler] = MappingProxyType(dict(handlers))

    @property
    def descriptors(self) -> Tuple[ToolDescriptor, ...]:
        return self._descriptors

    @property
    def names(self) -> List[str]:
        return [d.name for d in self._descriptors]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> ToolDescriptor:
        d = self._by_name.get(name)
        if d is None:
            raise ToolNotFound(name)
        return d

    def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Validate and dispatch one invocation.

        Raises ToolNotFound for unknown names and ToolParameterError for invalid
        parameters; anything the handler raises is propagated unchanged.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolNotFound(name)
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ToolParameterError(f"{name}: parameters must be an object")
        try:
            return handler(params)
        except ValidationError as e:
            errs = "; ".join(
                f"{'.'.join(str(x) for x in err.get('loc') or ()) or 'params'}: {err.get('msg')}" for err in e.errors()
            )
            raise ToolParameterError(f"{name}: {errs}") from e


_registry: ToolRegistry | None = None
_registry_lock = threading.Lock()


def build_registry() -> ToolRegistry:
    reg = ToolRegistry(load_descriptors(), HANDLERS)
    logger.info("Tool registry ready: %s", ", ".join(reg.names))
    return reg


def get_registry() -> ToolRegistry:
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = build_registry()
        return _registry


def execute_tool(name: str, params: Optional[Dict[str, Any]] = None) -> Any:
    return get_registry().execute(name, params)
