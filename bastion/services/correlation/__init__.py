"""
Bastion - Threat Correlation Package
====================================

Cross-community correlation of threat reports.

Author: Bastion Maintainers
"""

from bastion.services.correlation.analysis import CorrelationSettings, analyze, metadata_signature
from bastion.services.correlation.engine import ThreatCorrelationEngine

__all__ = [
    "ThreatCorrelationEngine",
    "CorrelationSettings",
    "analyze",
    "metadata_signature",
]
