"""消息协议：消息信封、payload 类型、类型守卫与工厂函数。"""

from corex_core.protocol.messages import (
    INBOUND_PAYLOADS,
    INBOUND_TYPES,
    OUTBOUND_PAYLOADS,
    OUTBOUND_TYPES,
    PAYLOAD_TYPES,
    ChatRequestData,
    ContextRequestData,
    ContextUpdateData,
    ErrorData,
    FileEditData,
    FileOpenData,
    Message,
    PlanRequestData,
    PlanningCompleteData,
    PlanningProgressData,
    RegenerateData,
    StopGenerationData,
    StreamingCompleteData,
    StreamingErrorData,
    StreamingStartData,
    StreamingTokenData,
    create_chat_request,
    create_context_request,
    create_file_edit,
    create_file_open,
    create_plan_request,
    create_regenerate,
    create_stop_generation,
    generate_message_id,
    is_chat_message,
    is_ide_message,
    is_inbound,
    is_outbound,
    is_planning_message,
    is_streaming_message,
    snapshot,
    validate_message,
)

__all__ = [
    "INBOUND_PAYLOADS",
    "INBOUND_TYPES",
    "OUTBOUND_PAYLOADS",
    "OUTBOUND_TYPES",
    "PAYLOAD_TYPES",
    "ChatRequestData",
    "ContextRequestData",
    "ContextUpdateData",
    "ErrorData",
    "FileEditData",
    "FileOpenData",
    "Message",
    "PlanRequestData",
    "PlanningCompleteData",
    "PlanningProgressData",
    "RegenerateData",
    "StopGenerationData",
    "StreamingCompleteData",
    "StreamingErrorData",
    "StreamingStartData",
    "StreamingTokenData",
    "create_chat_request",
    "create_context_request",
    "create_file_edit",
    "create_file_open",
    "create_plan_request",
    "create_regenerate",
    "create_stop_generation",
    "generate_message_id",
    "is_chat_message",
    "is_ide_message",
    "is_inbound",
    "is_outbound",
    "is_planning_message",
    "is_streaming_message",
    "snapshot",
    "validate_message",
]
