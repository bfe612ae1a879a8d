"""Serve a small handler on http://127.0.0.1:8080.

Usage:
    python examples/hello.py
    APP_ENV=development python examples/hello.py   # pretty-printed JSON

Try:
    curl -i http://127.0.0.1:8080/
    curl -i http://127.0.0.1:8080/items
    curl -i http://127.0.0.1:8080/items/9
    curl -i http://127.0.0.1:8080/steps
"""

from __future__ import annotations

import asyncio
import logging

from pipeserve import RequestEvent, ServerHandle, create_error, send, serve

ITEMS = {1: {"id": 1, "name": "kettle"}, 2: {"id": 2, "name": "teapot"}}


async def handler(event: RequestEvent):
    path = event.request.url.path

    if path == "/":
        return "hello\n"

    if path == "/items":
        return list(ITEMS.values())

    if path.startswith("/items/"):
        try:
            item_id = int(path.rsplit("/", 1)[1])
        except ValueError:
            raise create_error(400, "Item id must be an integer") from None
        if item_id not in ITEMS:
            raise create_error(404, "Not Found")
        return send(ITEMS[item_id], headers={"Cache-Control": "max-age=60"})

    if path == "/steps":
        return countdown()

    raise create_error(404, "Not Found")


async def countdown():
    # Only the last value is sent
    for n in (3, 2, 1):
        await asyncio.sleep(0.1)
        yield {"remaining": n - 1}


async def main() -> None:
    def ready(server: ServerHandle) -> None:
        print(f"Serving on {server.url}")

    handle = serve(handler)(8080, ready)
    try:
        await handle.wait_closed()
    finally:
        handle.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
