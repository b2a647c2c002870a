"""Stageflow -- creator project pipeline: stages, WIP limits, risk and automation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stageflow")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from stageflow.core import PipelineDB
from stageflow.engine import PipelineEngine
from stageflow.models import Project

__all__ = ["PipelineDB", "PipelineEngine", "Project", "__version__"]
