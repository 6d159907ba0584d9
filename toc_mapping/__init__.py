"""TOC Mapping - Seafloor organic carbon prediction with quantile regression forests."""

__version__ = "0.1.0"
__author__ = "TOC Mapping Team"
__description__ = "Spatial prediction of sediment organic carbon with spatial CV and area of applicability"

from toc_mapping.config.settings import Settings
from toc_mapping.data.grid import CovariateGrid, GridGeometry
from toc_mapping.data.observations import Observations
from toc_mapping.pipeline import PipelineResult, run_pipeline

__all__ = [
    "Settings",
    "CovariateGrid",
    "GridGeometry",
    "Observations",
    "PipelineResult",
    "run_pipeline",
]
