"""Models: quantile regression forest and the spatial modelling stages."""
