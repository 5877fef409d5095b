"""Minimal demonstration of the core engine."""

import asyncio

from corex_core.api.service import dispatch_message, reset_core_engine

if __name__ == "__main__":
    async def main():
        for payload in (
            {"type": "context/request", "data": {"requestId": "ctx-1", "query": "engine router", "maxFiles": 3}},
            {"type": "chat/request", "data": {"requestId": "chat-1", "message": "请简单介绍这个项目的结构"}},
        ):
            for message in await dispatch_message(payload):
                print(message["type"], message["data"])
        await reset_core_engine()

    asyncio.run(main())
