"""
ProofMark — Audit follower (MongoDB mirror + webhook)

The ledger is the audit log: every state change of the registry app emits an
ARC-28 event, starting with OwnershipTransferred in the creation call.
AuditFollower tails the app's transactions through the indexer from a round
cursor and delivers each decoded event to the sinks, one at a time and in
ledger order.

Delivery is at-least-once. The cursor only advances after a whole poll has
been delivered, and the MongoDB mirror is keyed by (tx_id, log_index), so
replaying a poll after a crash never duplicates a mirrored event.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional

import motor.motor_asyncio

from backend.events import decode_logs
from backend.notifications import send_event_notification

logger = logging.getLogger(__name__)

CURSOR_ID = "audit_follower"

# Module-level client so we reuse the connection across events
_client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None


def get_db() -> Optional[motor.motor_asyncio.AsyncIOMotorDatabase]:
    """Return the 'proofmark' MongoDB database, or None if not configured.
    Reads MONGODB_URI at call time so load_dotenv() in main.py takes effect first.
    """
    global _client
    uri = os.getenv("MONGODB_URI", "")
    if not uri:
        return None
    if _client is None:
        _client = motor.motor_asyncio.AsyncIOMotorClient(uri)
    return _client.proofmark


def event_id(event: dict) -> str:
    return f"{event['tx_id']}:{event['log_index']}"


async def mirror_event(event: dict) -> None:
    """Insert the event into the ``events`` collection unless it is already there."""
    db = get_db()
    if db is None:
        return
    try:
        doc = {**event, "recorded_at": datetime.now(timezone.utc).isoformat()}
        await db.events.update_one({"_id": event_id(event)}, {"$setOnInsert": doc}, upsert=True)
    except Exception as e:
        logger.warning(f"MongoDB audit mirror failed for {event['event']}: {e}")


async def deliver(event: dict) -> None:
    await mirror_event(event)
    await send_event_notification(event)


class AuditFollower:
    """
    Polls the indexer for the registry app's calls and delivers their events.

    Args:
        indexer_client: algosdk IndexerClient (blocking; called on the executor)
        app_id        : ProofMark application ID
        start_round   : first round to read when no cursor is stored
        poll_seconds  : pause between polls in run()
    """

    def __init__(self, indexer_client, app_id: int, start_round: int = 0, poll_seconds: float = 5.0) -> None:
        self.indexer = indexer_client
        self.app_id = app_id
        self.next_round = start_round
        self.poll_seconds = poll_seconds

    async def load_cursor(self) -> None:
        db = get_db()
        if db is None:
            return
        doc = await db.cursors.find_one({"_id": CURSOR_ID, "app_id": self.app_id})
        if doc:
            self.next_round = max(self.next_round, doc["next_round"])
            logger.info(f"Audit follower resuming at round {self.next_round}")

    async def save_cursor(self) -> None:
        db = get_db()
        if db is None:
            return
        try:
            await db.cursors.update_one(
                {"_id": CURSOR_ID},
                {"$set": {"app_id": self.app_id, "next_round": self.next_round}},
                upsert=True,
            )
        except Exception as e:
            logger.warning(f"Could not persist audit cursor at round {self.next_round}: {e}")

    def _search(self, next_page: Optional[str]) -> dict:
        kwargs = {"application_id": self.app_id, "min_round": self.next_round}
        if next_page:
            kwargs["next_page"] = next_page
        return self.indexer.search_transactions(**kwargs)

    async def poll_once(self) -> int:
        """Deliver every event confirmed since the cursor. Returns how many were delivered."""
        loop = asyncio.get_running_loop()
        delivered = 0
        last_round: Optional[int] = None
        next_page: Optional[str] = None

        while True:
            response = await loop.run_in_executor(None, self._search, next_page)
            txns = response.get("transactions", [])
            for txn in txns:
                for event in decode_logs(txn.get("logs", [])):
                    await deliver({**event, "tx_id": txn["id"], "round": txn["confirmed-round"]})
                    delivered += 1
                last_round = txn["confirmed-round"]
            next_page = response.get("next-token")
            if not txns or not next_page:
                break

        # The indexer imports whole rounds, so every call in last_round has been seen.
        if last_round is not None:
            self.next_round = last_round + 1
            await self.save_cursor()
        if delivered:
            logger.info(f"Audit follower delivered {delivered} event(s), next round {self.next_round}")
        return delivered

    async def run(self) -> None:
        await self.load_cursor()
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception(f"Audit follower poll from round {self.next_round} failed, retrying")
            await asyncio.sleep(self.poll_seconds)
