"""Manual smoke check against a running relay: ``python signaling_smoke.py``.

Two clients join the same room and exchange an offer.
"""
import asyncio
import json
import sys

import websockets


async def smoke(base_url: str = "ws://localhost:8000", room_id: str = "smoke-room"):
    url = f"{base_url}/ws/rooms/{room_id}"
    async with websockets.connect(url) as alice, websockets.connect(url) as bob:
        await alice.send(json.dumps({
            "type": "JOIN_ROOM", "roomId": room_id, "userId": "alice", "userName": "Alice",
        }))
        # ROOM_USERS then USER_JOINED, seen by both connections
        for ws in (alice, bob):
            for _ in range(2):
                print(f"Received: {await ws.recv()}")

        await bob.send(json.dumps({
            "type": "JOIN_ROOM", "roomId": room_id, "userId": "bob", "userName": "Bob",
        }))
        for ws in (alice, bob):
            for _ in range(2):
                print(f"Received: {await ws.recv()}")

        await alice.send(json.dumps({
            "type": "OFFER", "roomId": room_id, "userId": "alice",
            "targetUserId": "bob", "offer": {"type": "offer", "sdp": "v=0\r\n"},
        }))
        print(f"Bob received: {await bob.recv()}")

        await alice.send(json.dumps({"type": "LEAVE_ROOM", "roomId": room_id, "userId": "alice"}))
        for _ in range(2):
            print(f"Bob received: {await bob.recv()}")


if __name__ == "__main__":
    asyncio.run(smoke(*sys.argv[1:2]))
