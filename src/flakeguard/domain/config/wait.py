"""Wait configuration model."""

from pydantic import BaseModel, Field


class WaitConfig(BaseModel):
    """Default polling settings loaded from configuration.

    Attributes:
        timeout: How long a wait may take before failing, in seconds
        poll_interval: Pause between condition checks, in seconds
    """

    timeout: float = Field(30.0, ge=0.0)
    poll_interval: float = Field(0.5, gt=0.0)
