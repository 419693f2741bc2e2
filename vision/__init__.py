# =============================================================================
# Pasture Biomass Estimator - Remote Vision Package
# =============================================================================
# This package contains the remote side of the hybrid pipeline: prompt
# construction, the chat-completions client for the vision-language model,
# and extraction of the typed JSON reply from its free-form text.
# =============================================================================
