"""Weighted co-occurrence network analysis of OTU tables against environmental data."""

from otu_network.exceptions import (
    NetworkAnalysisError,
    ConfigurationError,
    DataQualityError,
    PowerSelectionError,
    ModuleDetectionError,
)
from otu_network.pipeline import NetworkAnalysisPipeline

__version__ = "0.1.0"

__all__ = [
    "NetworkAnalysisPipeline",
    "NetworkAnalysisError",
    "ConfigurationError",
    "DataQualityError",
    "PowerSelectionError",
    "ModuleDetectionError",
]
