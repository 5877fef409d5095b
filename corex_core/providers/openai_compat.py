"""OpenAI 兼容补全服务适配器。

本模块负责：

1. 接收 prompt、逻辑模型名与历史消息。
2. 将其转换为 `/chat/completions` 的 HTTP 请求格式（Ollama、LM Studio、OpenAI 均兼容）。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 把 HTTP 调用与取消令牌赛跑：令牌先触发则放弃请求并抛出 RequestCancelledError。

后续接入其他服务时，可以参考此文件的结构实现对应的 Client。
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from corex_core.domain.cancellation import CancellationToken
from corex_core.domain.exceptions import (
    ApiError,
    NetworkError,
    ProviderError,
    RateLimitError,
    RequestCancelledError,
    ValidationError,
)
from corex_core.domain.models import ChatMessage
from corex_core.providers.registry import ModelConfig, ProviderConfig


class OpenAICompatibleClient:
    """OpenAI 风格接口的补全客户端。

    - name: Provider 名称（供日志/调试使用）。
    - complete: 对外统一调用入口，返回完整文本。
    """

    def __init__(self, config: ProviderConfig, settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._config = config
        self._settings = settings
        self.name = config.name

    @property
    def base_url(self) -> str:
        return getattr(self._settings, f"{self.name}_base_url", None) or self._config.base_url

    @property
    def api_key(self) -> Optional[str]:
        return getattr(self._settings, f"{self.name}_api_key", None)

    async def complete(
        self,
        prompt: str,
        model: str,
        history: List[ChatMessage],
        cancellation_token: CancellationToken,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """执行一次非流式补全。

        history 不包含本次 prompt，prompt 会作为最后一条 user 消息追加。
        """

        cancellation_token.raise_if_cancelled()
        if self._config.requires_api_key and not self.api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message=f"{self.name.upper()}_API_KEY not set")
        model_cfg = self._config.resolve_model(model)
        payload = self._build_payload(prompt, history, model_cfg, temperature, max_tokens)

        request = asyncio.ensure_future(self._post(payload))
        cancelled = asyncio.ensure_future(cancellation_token.wait())
        try:
            done, _ = await asyncio.wait({request, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (request, cancelled):
                if not fut.done():
                    fut.cancel()
        if request not in done:
            raise RequestCancelledError(request_id=cancellation_token.request_id)
        return self._parse_response(request.result())

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, provider=self.name)
        if resp.status_code == 429:
            # 限流错误交给 retry 包装器做退避
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", provider=self.name)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider=self.name)
        return resp.json()

    def _build_payload(
        self,
        prompt: str,
        history: List[ChatMessage],
        model_cfg: ModelConfig,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        msgs = [{"role": m.role, "content": m.content} for m in history]
        msgs.append({"role": "user", "content": prompt})
        return {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "temperature": model_cfg.default_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or model_cfg.max_tokens,
            "stream": False,
        }

    def _parse_response(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(code="EMPTY_RESPONSE", message=f"{self.name} returned no choices", provider=self.name)
        message = choices[0].get("message") or {}
        return message.get("content") or ""
