"""Manual smoke check against a running server (``python -m huddle``)."""
import asyncio
import sys

from huddle.chat.models import Participant
from huddle.client import ChatConnection


async def main(url: str) -> None:
    me = Participant(id="smoke-user", username="Smoke Test")
    async with ChatConnection(me, url) as conn:
        await conn.wait_until_connected()
        # history and presence arrive right after the join
        await asyncio.sleep(0.5)
        print(f"History: {len(conn.view.messages)} messages")
        print(f"Online: {sorted(u.username for u in conn.view.online_users.values())}")

        local = await conn.send_message("Hello from Python!")
        await asyncio.sleep(0.5)
        print(f"Sent {local.id} -> {conn.view.messages[-1].id} ({conn.view.messages[-1].status.value})")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "ws://localhost:8000/ws"))
