from koso.clusters.engine import ClusterEngine, criticality_level
from koso.clusters.nudges import Nudge, NudgeFinder

__all__ = ["ClusterEngine", "Nudge", "NudgeFinder", "criticality_level"]
