# =============================================================================
# Pasture Biomass Estimator - Server Package
# =============================================================================
# This package contains the analysis orchestrator that coordinates local
# inference with the remote vision model, the FastAPI host exposing it over
# HTTP, and the command-line entry points.
# =============================================================================
