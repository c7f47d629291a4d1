from pydantic import BaseModel, ConfigDict, Field

MAX_SDP_LENGTH = 65_536
MAX_CANDIDATE_LENGTH = 1_024


class IceCandidate(BaseModel):
    """Network-reachability hint; identity is the (candidate, lineIndex) pair."""

    candidate: str = Field(..., min_length=1, max_length=MAX_CANDIDATE_LENGTH)
    line_index: int = Field(0, ge=0, alias="lineIndex")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def identity(self) -> tuple[str, int]:
        return (self.candidate, self.line_index)


class SdpBody(BaseModel):
    sdp: str = Field(..., min_length=1, max_length=MAX_SDP_LENGTH)


class VoiceSessionState(BaseModel):
    """Snapshot of a room's signaling slot.  Empty is represented by None."""

    offer: str | None = None
    answer: str | None = None
    ice_candidates: list[IceCandidate] = Field(default_factory=list, alias="iceCandidates")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def phase(self) -> str:
        if self.answer is not None:
            return "answered"
        if self.offer is not None:
            return "offered"
        return "started"
