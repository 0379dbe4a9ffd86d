"""
Intune Graph Automation
=======================
Microsoft Graph automation for Intune: compliance reporting, app inventory
and duplicate detection, install status, policy-change auditing, stale
device reporting, and per-device sync / wipe / retire actions.
"""

__version__ = "1.0.0"
__author__ = "Intune Graph Automation"
