# =============================================================================
# Pasture Biomass Estimator - Local Model Package
# =============================================================================
# This package contains the in-process components: image preprocessing into
# an ImageNet-normalized tensor, loading of the PyTorch biomass regressor,
# and the predictor that turns its raw outputs into a LocalPrediction.
# Local inference is an optional enhancement; its failures never escape.
# =============================================================================
