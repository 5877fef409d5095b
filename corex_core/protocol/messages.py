"""引擎消息协议。

两组互不相交的消息：

- 入站（shell -> engine）：chat/request、chat/stop、chat/regenerate、
  context/request、planning/request、ide/file-open、ide/file-edit。
- 出站（engine -> shell）：streaming/start|token|complete|error、
  context/update、planning/progress|complete、error。

每种 type 对应一个固定的 payload dataclass（PAYLOAD_TYPES），
Message.type 即判别字段。内部使用 snake_case 属性，
to_dict()/from_dict() 负责与线路格式（camelCase）互转。
"""

from __future__ import annotations

import copy
import dataclasses
import secrets
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from corex_core.domain.exceptions import ValidationError
from corex_core.domain.models import ContextFile, Plan


def _now_ms() -> int:
    return int(time.time() * 1000)


_id_counter = 0


def generate_message_id(prefix: str = "msg") -> str:
    """生成全局唯一的消息 ID：前缀 + 毫秒时间戳 + 单调计数 + 随机串。"""

    global _id_counter
    _id_counter += 1
    return f"{prefix}-{_now_ms()}-{_id_counter:x}{secrets.token_hex(4)}"


# ---- 入站 payload ----------------------------------------------------


@dataclass
class ChatRequestData:
    request_id: str
    message: str
    context: Optional[List[str]] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class StopGenerationData:
    request_id: str


@dataclass
class RegenerateData:
    message_id: str
    new_prompt: Optional[str] = None


@dataclass
class ContextRequestData:
    request_id: str
    query: str
    max_files: Optional[int] = None
    max_tokens: Optional[int] = None


@dataclass
class PlanRequestData:
    request_id: str
    task: str
    context: Optional[List[str]] = None


@dataclass
class FileOpenData:
    file_path: str


@dataclass
class FileEditData:
    file_path: str
    content: Optional[str] = None


# ---- 出站 payload ----------------------------------------------------


@dataclass
class StreamingStartData:
    request_id: str
    model: str


@dataclass
class StreamingTokenData:
    request_id: str
    token: str
    accumulated: str


@dataclass
class StreamingCompleteData:
    request_id: str
    full_response: str
    tokens_used: int
    duration: int  # 毫秒


@dataclass
class StreamingErrorData:
    request_id: str
    error: str
    stack: Optional[str] = None


@dataclass
class ContextUpdateData:
    request_id: str
    files: List[ContextFile]
    total_tokens: int


@dataclass
class PlanningProgressData:
    request_id: str
    plan: Plan
    current_step: int
    total_steps: int


@dataclass
class PlanningCompleteData:
    request_id: str
    plan: Plan
    success: bool


@dataclass
class ErrorData:
    error: str
    request_id: Optional[str] = None
    stack: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


INBOUND_PAYLOADS: Mapping[str, Type[Any]] = {
    "chat/request": ChatRequestData,
    "chat/stop": StopGenerationData,
    "chat/regenerate": RegenerateData,
    "context/request": ContextRequestData,
    "planning/request": PlanRequestData,
    "ide/file-open": FileOpenData,
    "ide/file-edit": FileEditData,
}

OUTBOUND_PAYLOADS: Mapping[str, Type[Any]] = {
    "streaming/start": StreamingStartData,
    "streaming/token": StreamingTokenData,
    "streaming/complete": StreamingCompleteData,
    "streaming/error": StreamingErrorData,
    "context/update": ContextUpdateData,
    "planning/progress": PlanningProgressData,
    "planning/complete": PlanningCompleteData,
    "error": ErrorData,
}

PAYLOAD_TYPES: Mapping[str, Type[Any]] = {**INBOUND_PAYLOADS, **OUTBOUND_PAYLOADS}

INBOUND_TYPES = frozenset(INBOUND_PAYLOADS)
OUTBOUND_TYPES = frozenset(OUTBOUND_PAYLOADS)


@dataclass
class Message:
    """消息信封：{id, type, timestamp} + 与 type 对应的 data。

    未知 type 也允许构造（data 保留原始 dict），以便 Router 报告它。
    """

    type: str
    data: Any = None
    id: str = ""
    timestamp: int = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        if not self.id:
            self.id = generate_message_id(self.type.replace("/", "-") or "msg")

    @property
    def request_id(self) -> Optional[str]:
        return getattr(self.data, "request_id", None)

    def to_dict(self) -> Dict[str, Any]:
        """转换为线路格式（camelCase）。"""

        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "data": _to_wire(self.data),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Message":
        """解析线路格式的消息。已知 type 的 data 会被转换为对应 dataclass。"""

        msg_type = payload.get("type") or payload.get("messageType")
        if not isinstance(msg_type, str) or not msg_type:
            raise ValidationError(code="INVALID_MESSAGE", message="message type is required")
        raw_data = payload.get("data")
        payload_cls = INBOUND_PAYLOADS.get(msg_type)
        data = _from_wire(payload_cls, raw_data) if payload_cls else raw_data
        kwargs: Dict[str, Any] = {"type": msg_type, "data": data}
        msg_id = payload.get("id") or payload.get("messageId")
        if msg_id:
            kwargs["id"] = str(msg_id)
        if payload.get("timestamp") is not None:
            kwargs["timestamp"] = int(payload["timestamp"])
        return cls(**kwargs)


def validate_message(message: Message) -> bool:
    """type 属于已声明集合，且 data 是该 type 声明的 payload 类。"""

    payload_cls = PAYLOAD_TYPES.get(message.type)
    if payload_cls is None or not isinstance(message.data, payload_cls):
        return False
    if not message.id or not isinstance(message.timestamp, int):
        return False
    for f in dataclasses.fields(payload_cls):
        if f.name == "request_id" and payload_cls is not ErrorData:
            if not isinstance(getattr(message.data, f.name), str):
                return False
    return True


def snapshot(plan: Plan) -> Plan:
    """计划的深拷贝，保证已发出的事件不会被后续状态变化篡改。"""

    return copy.deepcopy(plan)


# ---- 类型守卫 --------------------------------------------------------


def is_inbound(message: Message) -> bool:
    return message.type in INBOUND_TYPES


def is_outbound(message: Message) -> bool:
    return message.type in OUTBOUND_TYPES


def is_streaming_message(message: Message) -> bool:
    return message.type.startswith("streaming/")


def is_planning_message(message: Message) -> bool:
    return message.type.startswith("planning/")


def is_chat_message(message: Message) -> bool:
    return message.type.startswith("chat/")


def is_ide_message(message: Message) -> bool:
    return message.type.startswith("ide/")


# ---- 入站消息工厂 ----------------------------------------------------


def _new_request_id(prefix: str) -> str:
    return f"{prefix}-{_now_ms()}-{secrets.token_hex(4)}"


def create_chat_request(
    message: str,
    *,
    request_id: Optional[str] = None,
    context: Optional[List[str]] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> Message:
    return Message(
        type="chat/request",
        data=ChatRequestData(
            request_id=request_id or _new_request_id("req"),
            message=message,
            context=context,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        ),
    )


def create_stop_generation(request_id: str) -> Message:
    return Message(type="chat/stop", data=StopGenerationData(request_id=request_id))


def create_regenerate(message_id: str, new_prompt: Optional[str] = None) -> Message:
    return Message(type="chat/regenerate", data=RegenerateData(message_id=message_id, new_prompt=new_prompt))


def create_context_request(
    query: str,
    *,
    request_id: Optional[str] = None,
    max_files: Optional[int] = None,
    max_tokens: Optional[int] = None,
) -> Message:
    return Message(
        type="context/request",
        data=ContextRequestData(
            request_id=request_id or _new_request_id("ctx"),
            query=query,
            max_files=max_files,
            max_tokens=max_tokens,
        ),
    )


def create_plan_request(task: str, *, request_id: Optional[str] = None, context: Optional[List[str]] = None) -> Message:
    return Message(
        type="planning/request",
        data=PlanRequestData(request_id=request_id or _new_request_id("plan"), task=task, context=context),
    )


def create_file_open(file_path: str) -> Message:
    return Message(type="ide/file-open", data=FileOpenData(file_path=file_path))


def create_file_edit(file_path: str, content: Optional[str] = None) -> Message:
    return Message(type="ide/file-edit", data=FileEditData(file_path=file_path, content=content))


# ---- camelCase 转换 --------------------------------------------------


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _to_wire(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out: Dict[str, Any] = {}
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            if item is None:
                continue
            out[_camel(f.name)] = _to_wire(item)
        return out
    if isinstance(value, dict):
        return {k: _to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_wire(v) for v in value]
    return value


@lru_cache(maxsize=None)
def _adapter(payload_cls: Type[Any]) -> TypeAdapter:
    return TypeAdapter(payload_cls)


def _from_wire(payload_cls: Type[Any], raw: Any) -> Any:
    if not isinstance(raw, Mapping):
        raise ValidationError(code="INVALID_MESSAGE", message=f"{payload_cls.__name__} expects an object payload")
    kwargs: Dict[str, Any] = {}
    for f in dataclasses.fields(payload_cls):
        camel = _camel(f.name)
        if camel in raw:
            kwargs[f.name] = raw[camel]
        elif f.name in raw:
            kwargs[f.name] = raw[f.name]
    try:
        return _adapter(payload_cls).validate_python(kwargs)
    except PydanticValidationError as exc:
        problems = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
        raise ValidationError(code="INVALID_MESSAGE", message=f"{payload_cls.__name__}: {problems}") from exc
