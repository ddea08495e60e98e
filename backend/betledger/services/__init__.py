"""Application services: placement, exposure queries, corrections and the outcome feed."""
