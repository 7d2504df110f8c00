"""
Media session state.
"""
import uuid
from datetime import datetime
from typing import List, Optional

from sharecast.schemas import Candidate, SessionState
from sharecast.signaling.candidate_buffer import CandidateBuffer


class Session:
    """
    Holds the state for a single negotiation attempt.

    Owned by one SessionController and passed by reference to the engine
    driving it. A closed session is never reopened.
    """
    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.state = SessionState.IDLE
        self.local_description_set = False
        self.remote_description_set = False
        self.candidates = CandidateBuffer()

        self.close_reason: Optional[str] = None
        self.error: Optional[Exception] = None
        self.created_at = datetime.utcnow()
        self.closed_at: Optional[datetime] = None

    @property
    def pending_remote_candidates(self) -> List[Candidate]:
        return self.candidates.inbound

    @property
    def is_active(self) -> bool:
        return self.state is not SessionState.CLOSED

    def __repr__(self) -> str:
        return f"Session(id={self.session_id}, state={self.state.value})"
