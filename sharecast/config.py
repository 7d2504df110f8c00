"""
Configuration management for the sharecast receiver.
"""
import json
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # =========================
    # Application
    # =========================
    app_name: str = Field(default="sharecast")
    app_version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)
    log_level: str = "INFO"

    # =========================
    # Signaling
    # =========================
    signaling_url: str = "ws://localhost:8080/ws"
    signaling_open_timeout: float = 10.0
    # The screen-share server exchanges bare SDP text instead of {type, sdp}
    signaling_raw_sdp: bool = True

    # =========================
    # WebRTC
    # =========================
    webrtc_stun_servers: str = "stun:stun.l.google.com:19302"
    webrtc_turn_servers: str = ""

    # =========================
    # Session timeouts (0 disables)
    # =========================
    offer_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 30.0

    # =========================
    # Receiver
    # =========================
    record_path: Optional[str] = None
    receiver_frame_timeout: float = 2.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    # =========================
    # Derived Properties
    # =========================
    @property
    def stun_servers_list(self) -> List[str]:
        return [s.strip() for s in self.webrtc_stun_servers.split(",") if s.strip()]

    @property
    def turn_servers_list(self) -> List[Dict[str, Any]]:
        if not self.webrtc_turn_servers:
            return []
        servers = json.loads(self.webrtc_turn_servers)
        if isinstance(servers, dict):
            servers = [servers]
        return servers


settings = Settings()
