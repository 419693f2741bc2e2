# =============================================================================
# Pasture Biomass Estimator - Shared Package
# =============================================================================
# Data contracts and the error taxonomy used by the local model, the remote
# vision client, the orchestrator and the HTTP host.
# =============================================================================
