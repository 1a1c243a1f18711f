"""
Envelope types for the line-delimited JSON-RPC protocol spoken with the
automation server.

Every decoded line becomes exactly one tagged variant; the client never has
to poke at raw dicts to decide what a message is.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"


@dataclass
class Request:
    id: int
    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method, "params": self.params}


@dataclass
class Notification:
    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "method": self.method, "params": self.params}


@dataclass
class Response:
    id: Any
    result: Any = None


@dataclass
class ErrorResponse:
    id: Any
    code: Optional[int] = None
    message: str = ""
    data: Any = None


@dataclass
class UnknownMessage:
    raw: Any


Message = Union[Request, Notification, Response, ErrorResponse, UnknownMessage]


def encode(message: Union[Request, Notification]) -> bytes:
    """Serialize a request or notification as one newline-terminated line"""
    return (json.dumps(message.to_dict(), separators=(",", ":")) + "\n").encode("utf-8")


def parse_message(raw: Any) -> Message:
    """Classify an already-decoded JSON value"""
    if not isinstance(raw, dict):
        return UnknownMessage(raw)

    msg_id = raw.get("id")
    method = raw.get("method")

    if msg_id is not None and raw.get("error") is not None:
        error = raw.get("error")
        if isinstance(error, dict):
            return ErrorResponse(
                id=msg_id,
                code=error.get("code"),
                message=str(error.get("message") or f"MCP Error: {json.dumps(error)}"),
                data=error.get("data"),
            )
        return ErrorResponse(id=msg_id, message=str(error))

    if msg_id is not None and "result" in raw:
        return Response(id=msg_id, result=raw.get("result"))

    if isinstance(method, str):
        params = raw.get("params") if isinstance(raw.get("params"), dict) else {}
        if msg_id is None:
            return Notification(method=method, params=params)
        return Request(id=msg_id, method=method, params=params)

    return UnknownMessage(raw)


def decode_line(line: Union[str, bytes]) -> Message:
    """Decode one protocol line; raises ValueError when it is not usable JSON"""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    try:
        raw = json.loads(line)
    except RecursionError as e:
        raise ValueError(f"JSON nested too deeply: {e}") from e
    return parse_message(raw)


# ----------------------------------------------------------------------
# Tool results
# ----------------------------------------------------------------------


def result_texts(result: Any) -> List[str]:
    """Collect the text items of a tools/call result"""
    if isinstance(result, str):
        return [result]
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list):
            return [
                item["text"]
                for item in content
                if isinstance(item, dict) and isinstance(item.get("text"), str)
            ]
        for key in ("result", "text"):
            if isinstance(result.get(key), str):
                return [result[key]]
    if isinstance(result, list):
        texts = []
        for item in result:
            texts.extend(result_texts(item))
        return texts
    return []


def _loads_nested(text: str) -> Any:
    value = json.loads(text)
    # Scripts that JSON.stringify their answer come back double encoded
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("[", "{"):
            return json.loads(stripped)
    return value


def extract_json_payload(result: Any) -> Optional[Any]:
    """Find the first JSON document in a tool result, or None"""
    for text in result_texts(result):
        candidates = [text.strip()]
        if "Result:" in text:
            candidates.append(text.rsplit("Result:", 1)[1].strip())
        # Some servers prefix the payload with a human readable banner
        for marker in ("[", "{"):
            pos = text.find(marker)
            if pos > 0:
                candidates.append(text[pos:].strip())
        for candidate in candidates:
            try:
                return _loads_nested(candidate)
            except ValueError:
                continue
    return None


def is_error_result(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("isError"))
