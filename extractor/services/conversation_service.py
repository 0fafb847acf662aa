from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from extractor.models import ConversationMessage

STATUS_OK = "ok"
STATUS_EMPTY = "empty"


@dataclass
class Transcript:
    conversation_id: str
    messages: List[dict] = field(default_factory=list)
    location_id: Optional[str] = None
    contact_id: Optional[str] = None
    status: str = STATUS_EMPTY

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def as_text(self) -> str:
        return "\n".join(f"{turn['role']}: {turn['content']}" for turn in self.messages)


def role_for_direction(direction: Optional[str]) -> str:
    return "user" if direction == "inbound" else "assistant"


def assemble_transcript(
    db: Session,
    conversation_id: str,
    location_id: Optional[str] = None,
    limit: int = 20,
) -> Transcript:
    """Most recent ``limit`` messages with a body, returned oldest first.

    An empty conversation is not an error: the transcript comes back with
    status "empty" so the caller can stop early.
    """
    query = db.query(ConversationMessage).filter(
        ConversationMessage.conversation_id == conversation_id,
        ConversationMessage.body.isnot(None),
    )
    if location_id:
        query = query.filter(ConversationMessage.location_id == location_id)

    rows = query.order_by(ConversationMessage.date_added.desc()).limit(limit).all()
    rows = sorted(rows, key=lambda row: row.date_added)

    transcript = Transcript(conversation_id=conversation_id, location_id=location_id)
    if not rows:
        return transcript

    transcript.messages = [
        {"role": role_for_direction(row.direction), "content": row.body} for row in rows
    ]
    transcript.status = STATUS_OK

    # contact_id can show up only on later messages once the CRM enriches the thread
    for row in reversed(rows):
        if transcript.location_id is None and row.location_id:
            transcript.location_id = row.location_id
        if transcript.contact_id is None and row.contact_id:
            transcript.contact_id = row.contact_id
        if transcript.location_id and transcript.contact_id:
            break

    return transcript
