"""
Session and Event stores over MongoDB

The event log is the source of truth; the session's integrity_score is only a
cached copy of the last computed report.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING # type: ignore

from .models import Event, Session, utcnow

logger = logging.getLogger(__name__)

# Fields a client may change on an existing session
PATCHABLE_FIELDS = frozenset({"recording_ref", "end_time", "candidate_name", "integrity_score"})


def check_patch(fields: Dict[str, Any]) -> Dict[str, Any]:
    rejected = set(fields) - PATCHABLE_FIELDS
    if rejected:
        raise ValueError(f"Fields not patchable: {sorted(rejected)}")
    return fields


def session_from_doc(doc: Dict[str, Any]) -> Session:
    return Session(
        id=str(doc["_id"]),
        candidate_name=doc.get("candidate_name"),
        start_time=doc["start_time"],
        end_time=doc.get("end_time"),
        recording_ref=doc.get("recording_ref"),
        integrity_score=doc.get("integrity_score"),
    )


def event_from_doc(doc: Dict[str, Any]) -> Event:
    return Event(
        id=str(doc["_id"]),
        session_id=doc["session_id"],
        offset_ms=doc["offset_ms"],
        event_type=doc["event_type"],
        confidence=doc.get("confidence"),
        metadata=doc.get("metadata"),
        client_event_id=doc.get("client_event_id"),
        created_at=doc["created_at"],
    )


class SessionStore:
    def __init__(self, collection):
        self.collection = collection

    async def create(self, candidate_name: Optional[str] = None) -> Session:
        session = Session(id=str(uuid.uuid4()), candidate_name=candidate_name, start_time=utcnow())
        # Store with Mongo _id as our string UUID
        await self.collection.insert_one({
            "_id": session.id,
            "candidate_name": session.candidate_name,
            "start_time": session.start_time,
            "end_time": None,
            "recording_ref": None,
            "integrity_score": None,
        })
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        doc = await self.collection.find_one({"_id": session_id})
        return session_from_doc(doc) if doc else None

    async def list(self) -> List[Session]:
        cursor = self.collection.find().sort("start_time", DESCENDING)
        return [session_from_doc(doc) async for doc in cursor]

    async def patch(self, session_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update allow-listed fields.

        Raises:
            ValueError: if any field is outside PATCHABLE_FIELDS

        Returns:
            False if the session does not exist
        """
        check_patch(fields)
        if not fields:
            return await self.get(session_id) is not None
        result = await self.collection.update_one({"_id": session_id}, {"$set": fields})
        return result.matched_count > 0

    async def set_score(self, session_id: str, score: int) -> bool:
        return await self.patch(session_id, {"integrity_score": score})


class EventStore:
    def __init__(self, collection):
        self.collection = collection

    async def append(self, session_id: str, events: List[Event]) -> int:
        if not events:
            return 0
        docs = [
            {
                "_id": str(uuid.uuid4()),
                "session_id": session_id,
                "offset_ms": e.offset_ms,
                "event_type": e.event_type,
                "confidence": e.confidence,
                "metadata": e.metadata,
                "client_event_id": e.client_event_id,
                "created_at": e.created_at,
            }
            for e in events
        ]
        # ordered insert keeps the batch order
        await self.collection.insert_many(docs, ordered=True)
        logger.debug(f"Stored {len(docs)} events for {session_id}")
        return len(docs)

    async def query(self, session_id: str) -> List[Event]:
        cursor = self.collection.find({"session_id": session_id}).sort(
            [("offset_ms", ASCENDING), ("created_at", ASCENDING)]
        )
        return [event_from_doc(doc) async for doc in cursor]
