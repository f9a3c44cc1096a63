"""Wire models for the local WebRTC signaling endpoint."""

from pydantic import BaseModel, ConfigDict, Field


class SignalingOffer(BaseModel):
    """Body POSTed to ``/webrtc/offer``."""
    model_config = ConfigDict(populate_by_name=True)

    sdp: str
    type: str
    session_id: str = Field(alias="sessionId")


class SignalingAnswer(BaseModel):
    """Answer returned by the local server; both fields are mandatory."""
    sdp: str = Field(min_length=1)
    type: str = Field(min_length=1)
