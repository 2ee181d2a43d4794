"""Permadeploy Core - publish static web builds permanently to an ordinals chain."""

from permadeploy_core.analysis import AnalysisResult, DependencyGraph, analyze_tree
from permadeploy_core.config import PermadeployConfig, load_config
from permadeploy_core.errors import DeployError
from permadeploy_core.orchestrator import (
    DeployCallbacks,
    Deployer,
    DeploymentResult,
    DeployRequest,
    create_deployer,
)
from permadeploy_core.publish import DryRunStrategy, NetworkStrategy, PublishEngine
from permadeploy_core.retry import RetryPolicy
from permadeploy_core.scheduling import compute_waves
from permadeploy_core.versioning import VersionChain, VersionReader

__version__ = "0.1.0"

__all__ = [
    "AnalysisResult",
    "DependencyGraph",
    "DeployCallbacks",
    "DeployError",
    "DeployRequest",
    "Deployer",
    "DeploymentResult",
    "DryRunStrategy",
    "NetworkStrategy",
    "PermadeployConfig",
    "PublishEngine",
    "RetryPolicy",
    "VersionChain",
    "VersionReader",
    "analyze_tree",
    "compute_waves",
    "create_deployer",
    "load_config",
]
