"""
Decision Workflow Module

Agent-side processing of tickets at a port:

- scan_service.py: time-limited scan lease that moves a ticket to pending
- decision_service.py: one accept/reject decision per action type, status
  transitions and propagation to child tickets
- overstay_service.py: legal-stay compliance for foreign travelers
- router.py: agent scan/decide endpoints and the overstay read endpoint
"""

from .router import router, overstay_router
from .scan_service import ScanService
from .decision_service import DecisionRecorder
from .overstay_service import OverstayCalculator
from .schemas import ScanRequest, ScanResponse, DecisionRequest, DecisionResponse, OverstayStatus

__all__ = [
    "router",
    "overstay_router",
    "ScanService",
    "DecisionRecorder",
    "OverstayCalculator",
    "ScanRequest",
    "ScanResponse",
    "DecisionRequest",
    "DecisionResponse",
    "OverstayStatus",
]
