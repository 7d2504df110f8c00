"""
Remote media stream reference.
"""
import uuid
from typing import Any, List, Optional


class RemoteMediaStream:
    """
    The remote tracks delivered by one negotiated session.

    Tracks belong to the peer connection; this only groups references to
    them so consumers can attach the stream as a whole.
    """

    def __init__(self, stream_id: Optional[str] = None):
        self.stream_id = stream_id or uuid.uuid4().hex
        self.tracks: List[Any] = []

    def add_track(self, track) -> None:
        if track not in self.tracks:
            self.tracks.append(track)

    @property
    def track_kinds(self) -> List[str]:
        return [getattr(track, "kind", "unknown") for track in self.tracks]

    def get_track(self, kind: str):
        for track in self.tracks:
            if getattr(track, "kind", None) == kind:
                return track
        return None

    def __repr__(self) -> str:
        return f"RemoteMediaStream(id={self.stream_id}, tracks={self.track_kinds})"
