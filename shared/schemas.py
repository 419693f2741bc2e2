# =============================================================================
# Pasture Biomass Estimator - Shared Data Schemas
# =============================================================================
# Pydantic models defining the data contracts of the hybrid pipeline:
#
#   LocalPrediction      — output of the in-process PyTorch model (hint only)
#   RemoteVisionResponse — typed target for the remote model's JSON reply
#   AnalysisResult       — final merged record handed to the caller
#
# plus the envelope shapes of the remote chat-completions reply, which are
# normalized into plain text immediately after receipt.
#
# All biomass quantities are dry masses in grams.
# =============================================================================

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BiomassComponents(BaseModel):
    """
    The five biomass quantities estimated for one image.

    The relations total ≈ green + clover + dead and gdm ≈ 0.85 × green are
    advisory; they are requested from the remote model but never enforced.
    """

    model_config = ConfigDict(frozen=True)

    dry_green_g: float = Field(..., description="Dry mass of green material")
    dry_clover_g: float = Field(..., description="Dry mass of clover")
    dry_dead_g: float = Field(..., description="Dry mass of dead material")
    dry_total_g: float = Field(..., description="Total dry biomass")
    gdm_g: float = Field(..., description="Green dry matter (usable forage)")


class LocalPrediction(BaseModel):
    """
    Result of one local model inference call.

    Values are mapped positionally from the raw output vector and floored at
    zero. A failed prediction carries zeros and an error message; it is never
    folded into the remote prompt.

    Attributes:
        raw_predictions: The unclamped output vector as returned by the model.
        confidence:      Heuristic in [0.10, 0.95], not a calibrated probability.
        success:         False when the model is unavailable or inference failed.
        error_message:   Diagnostic text for failed predictions.
    """

    model_config = ConfigDict(frozen=True)

    dry_green: float = Field(default=0.0, ge=0.0)
    dry_clover: float = Field(default=0.0, ge=0.0)
    dry_dead: float = Field(default=0.0, ge=0.0)
    dry_total: float = Field(default=0.0, ge=0.0)
    gdm: float = Field(default=0.0, ge=0.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_predictions: List[float] = Field(default_factory=list)
    success: bool = False
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, message: str) -> "LocalPrediction":
        """Build the failed variant carrying a diagnostic message."""
        return cls(success=False, error_message=message)


class RemoteVisionResponse(BaseModel):
    """
    Typed deserialization target for the remote vision model's JSON reply.

    Keys are matched case-insensitively against the PascalCase contract
    (``DryGreen``, ``drygreen`` and ``DRYGREEN`` are equivalent). The five
    biomass numbers and the confidence are required and must be JSON numbers
    (numeric strings and booleans are rejected); text fields may be missing
    or null.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    id: Optional[str] = Field(default=None, alias="Id")
    title: Optional[str] = Field(default=None, alias="Title")
    description: Optional[str] = Field(default=None, alias="Description")
    dry_green: float = Field(..., alias="DryGreen", strict=True, ge=0.0)
    dry_clover: float = Field(..., alias="DryClover", strict=True, ge=0.0)
    dry_dead: float = Field(..., alias="DryDead", strict=True, ge=0.0)
    dry_total: float = Field(..., alias="DryTotal", strict=True, ge=0.0)
    gdm: float = Field(..., alias="Gdm", strict=True, ge=0.0)
    recommendations: Optional[str] = Field(default=None, alias="Recommendations")
    confidence: float = Field(..., alias="Confidence", strict=True, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def _match_keys_case_insensitively(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        aliases = {
            info.alias.lower(): info.alias
            for info in cls.model_fields.values()
            if info.alias
        }
        return {aliases.get(str(key).lower(), key): value for key, value in data.items()}


class AnalysisResult(BaseModel):
    """
    Final record produced by one successful analysis.

    Attributes:
        id:               Identifier from the remote reply, or a fresh UUID4.
        analysis_date:    When the result was assembled (UTC).
        components:       Biomass values copied verbatim from the remote reply.
        image_base64:     Base64 copy of the submitted image bytes.
        confidence_score: Remote model confidence in [0, 1].
        attempts:         Remote attempts used, including the successful one.
        local_hint_used:  Whether a local prediction was folded into the prompt.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    description: str = ""
    analysis_date: datetime
    components: BiomassComponents
    image_base64: str
    recommendations: str = ""
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    attempts: int = Field(default=1, ge=1)
    local_hint_used: bool = False


# ---------------------------------------------------------------------------
# Remote reply envelope
# ---------------------------------------------------------------------------
class ChatMessage(BaseModel):
    content: Optional[str] = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChoicesReply(BaseModel):
    """OpenAI-style envelope: text lives in ``choices[0].message.content``."""

    choices: List[ChatChoice] = Field(..., min_length=1)

    def text(self) -> Optional[str]:
        return self.choices[0].message.content


class ContentReply(BaseModel):
    """Flat envelope: text lives in a top-level ``content`` string."""

    content: Optional[str] = Field(...)

    def text(self) -> Optional[str]:
        return self.content


RemoteReplyEnvelope = Union[ChoicesReply, ContentReply]


class HealthResponse(BaseModel):
    """Liveness report of the HTTP host."""

    status: str
    model_loaded: bool
    device: Optional[str] = None
    remote_configured: bool
    uptime_seconds: float
