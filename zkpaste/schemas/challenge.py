from pydantic import BaseModel


class ChallengeResponse(BaseModel):
    token: str
    difficulty: int
    expires_at: int  # epoch seconds
    algorithm: str = "sha256"
