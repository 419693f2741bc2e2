# =============================================================================
# Pasture Biomass Estimator - Error Taxonomy
# =============================================================================
# Classified failures raised across the hybrid pipeline. The orchestrator
# uses the class of a failure to decide between retrying with backoff and
# surfacing it immediately; the HTTP host uses it to pick a status code.
#
# Local-model faults (DecodeError, ModelLoadError) never leave the local
# predictor: they are downgraded to a failed LocalPrediction.
# =============================================================================

from typing import Optional


class BiomassAnalysisError(Exception):
    """
    Base class for every classified failure in the pipeline.

    Attributes:
        attempts: Number of remote attempts made before this failure left the
                  orchestrator, or None when raised outside of it.
    """

    def __init__(self, message: str, *, attempts: Optional[int] = None):
        super().__init__(message)
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Local model
# ---------------------------------------------------------------------------
class DecodeError(BiomassAnalysisError):
    """Image bytes could not be decoded for local preprocessing."""


class ModelLoadError(BiomassAnalysisError):
    """Neither the whole-model artifact nor the state-dict fallback could be loaded."""


# ---------------------------------------------------------------------------
# Shared image input preconditions
# ---------------------------------------------------------------------------
class ImageValidationError(BiomassAnalysisError):
    """The image input is unusable before any network call is made."""


class EmptyImageError(ImageValidationError):
    pass


class CorruptImageError(ImageValidationError):
    pass


# ---------------------------------------------------------------------------
# Remote vision model
# ---------------------------------------------------------------------------
class RemoteVisionError(BiomassAnalysisError):
    """Base for failures talking to the remote vision endpoint."""


class RemoteTransportError(RemoteVisionError):
    """Network-level failure (connection refused, DNS, reset)."""


class RemoteTimeoutError(RemoteTransportError):
    """The attempt exceeded its timeout or was cancelled by the caller."""


class RemoteServiceError(RemoteVisionError):
    """
    Service-side failure that is not a network fault: an HTTP error status,
    a body that is not JSON, or a reply envelope of unknown shape.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(message, attempts=attempts)
        self.status_code = status_code


class RemoteEmptyResponseError(RemoteVisionError):
    """The remote reply carried no usable text after fence stripping."""


class ResponseParseError(BiomassAnalysisError):
    """The remote text is not a JSON object matching the response contract."""


# ---------------------------------------------------------------------------
# Terminal orchestrator failures
# ---------------------------------------------------------------------------
class AnalysisFailure(BiomassAnalysisError):
    """
    The retry budget was exhausted on transient failures.

    Attributes:
        attempts: Total remote attempts made.
        cause:    The last transient failure observed.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, attempts=attempts)
        self.cause = cause


class AnalysisTimeout(AnalysisFailure):
    """Every attempt in the retry budget timed out."""


TRANSIENT_ERRORS = (RemoteTimeoutError, RemoteEmptyResponseError)
