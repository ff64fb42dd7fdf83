"""Manual smoke client for a running relay.

Usage:
    python backend/scripts/chat_client.py [ws://localhost:3000/ws/chat] [name]
"""
import asyncio
import json
import sys

import websockets


async def run(url: str, name: str) -> None:
    async with websockets.connect(url) as ws:
        # History replay first, then the presence list
        history = json.loads(await ws.recv())
        print(f"History ({len(history['messages'])} messages):")
        for msg in history["messages"]:
            print(f"  {msg['sender']}: {msg['message']}")
        print(f"Presence: {json.loads(await ws.recv())['users']}")

        await ws.send(json.dumps({"type": "identify", "displayName": name}))
        print(f"Presence: {json.loads(await ws.recv())['users']}")

        await ws.send(json.dumps({
            "type": "chat",
            "sender": name,
            "message": "Hello from Python!"
        }))

        # Broadcast of our own message
        msg = json.loads(await ws.recv())
        print(f"Received: {msg}")

        await ws.send(json.dumps({"type": "leave", "displayName": name}))


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else "ws://localhost:3000/ws/chat"
    name = sys.argv[2] if len(sys.argv) > 2 else "smoke-test"
    asyncio.run(run(url, name))
