import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from corex_core.config.settings import settings

# 引擎日志的关联字段：既可以直接作为 LogRecord 属性传入，也可以放在 extra["extra"] 中
ENGINE_FIELDS = ("request_id", "message_id", "type", "component", "operation")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        extra = extra if isinstance(extra, dict) else {}
        for key in ENGINE_FIELDS:
            value = extra.get(key, getattr(record, key, None))
            if value is not None:
                payload[key] = value
        payload.update({k: v for k, v in extra.items() if k not in payload})
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("corex_core")
    logger.setLevel(logging.INFO)
    if any(getattr(h, "_corex_json", False) for h in logger.handlers):
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "corex.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh._corex_json = True  # type: ignore[attr-defined]
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


logger = setup_logger()
