"""
JSON-RPC 2.0 adapter exposing the tool registry to MCP clients.

Transport-free: `handle_rpc_body()` turns raw request bytes into an `RpcReply`
(HTTP status + optional JSON body). Admission is checked by the HTTP route before
the body is parsed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from explorer.tools.registry import ToolNotFound, ToolParameterError, ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"
SERVER_INFO = {"name": "nyc-schools-data", "version": "1.0.0"}

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
RATE_LIMIT_EXCEEDED = -32002

_HTTP_STATUS = {
    PARSE_ERROR: 400,
    INVALID_REQUEST: 400,
    METHOD_NOT_FOUND: 400,
    INVALID_PARAMS: 400,
    INTERNAL_ERROR: 500,
    RATE_LIMIT_EXCEEDED: 429,
}

_NOTIFICATION_METHODS = ("notifications/initialized", "initialized")


class RpcError(Exception):
    def __init__(self, code: int, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass(frozen=True)
class RpcReply:
    status_code: int
    body: Optional[Dict[str, Any]] = None


def rpc_error(rid: Any, code: int, message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "id": rid, "error": err}


def rpc_result(rid: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": rid, "result": result}


def rate_limited_reply(retry_after_seconds: int) -> RpcReply:
    return RpcReply(
        _HTTP_STATUS[RATE_LIMIT_EXCEEDED],
        rpc_error(None, RATE_LIMIT_EXCEEDED, "Rate limit exceeded", {"retryAfter": int(retry_after_seconds)}),
    )


def status_document() -> Dict[str, Any]:
    return {"status": "ok", "service": "nyc-schools-mcp", "protocolVersion": PROTOCOL_VERSION}


def _initialize(params: Dict[str, Any]) -> Dict[str, Any]:
    client = params.get("clientInfo") if isinstance(params.get("clientInfo"), dict) else {}
    logger.info("MCP initialize from client=%s", client.get("name") or "unknown")
    return {"protocolVersion": PROTOCOL_VERSION, "serverInfo": dict(SERVER_INFO), "capabilities": {"tools": {}}}


def _tools_list(registry: ToolRegistry) -> Dict[str, Any]:
    return {"tools": [d.for_mcp() for d in registry.descriptors]}


def _tools_call(registry: ToolRegistry, params: Dict[str, Any], *, caller: str) -> Dict[str, Any]:
    name = params.get("name")
    if not isinstance(name, str) or not name.strip():
        raise RpcError(INVALID_PARAMS, "tools/call requires name parameter")
    args = params.get("arguments")
    if args is None:
        args = {}
    logger.info("MCP tools/call tool=%s caller=%s", name, caller)
    try:
        result = registry.execute(name, args)
    except ToolNotFound as e:
        raise RpcError(INVALID_PARAMS, str(e)) from e
    except ToolParameterError as e:
        raise RpcError(INVALID_PARAMS, str(e)) from e
    except Exception as e:
        logger.exception("MCP tool %s failed", name)
        raise RpcError(INTERNAL_ERROR, str(e) or "Tool execution failed") from e
    return {"content": [{"type": "text", "text": json.dumps(result, ensure_ascii=False, default=str)}]}


def handle_rpc_body(raw: bytes, *, registry: ToolRegistry, caller: str = "unknown") -> RpcReply:
    """
    Handle one JSON-RPC message.

    Messages without an `id` are notifications: they are acknowledged with 202 and no
    body, whatever the method. Unknown methods that expect a reply get -32601.
    """
    try:
        msg = json.loads(raw or b"")
    except ValueError:
        return RpcReply(400, rpc_error(None, PARSE_ERROR, "Parse error"))

    if not isinstance(msg, dict):
        return RpcReply(400, rpc_error(None, INVALID_REQUEST, "Invalid request"))
    rid = msg.get("id")
    if msg.get("jsonrpc") != "2.0":
        return RpcReply(400, rpc_error(rid, INVALID_REQUEST, "Invalid JSON-RPC version"))
    method = msg.get("method")
    if not isinstance(method, str) or not method:
        return RpcReply(400, rpc_error(rid, INVALID_REQUEST, "Method is required"))

    if rid is None or method in _NOTIFICATION_METHODS:
        logger.info("MCP notification method=%s caller=%s", method, caller)
        return RpcReply(202)

    params = msg.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return RpcReply(400, rpc_error(rid, INVALID_PARAMS, "params must be an object"))

    try:
        if method == "initialize":
            result: Any = _initialize(params)
        elif method == "tools/list":
            result = _tools_list(registry)
        elif method == "tools/call":
            result = _tools_call(registry, params, caller=caller)
        elif method == "ping":
            result = {}
        else:
            logger.info("MCP unknown method=%s caller=%s", method, caller)
            raise RpcError(METHOD_NOT_FOUND, "Method not found")
    except RpcError as e:
        return RpcReply(_HTTP_STATUS.get(e.code, 400), rpc_error(rid, e.code, e.message, e.data))
    except Exception:
        logger.exception("MCP method %s failed", method)
        return RpcReply(500, rpc_error(rid, INTERNAL_ERROR, "Internal error"))

    return RpcReply(200, rpc_result(rid, result))
