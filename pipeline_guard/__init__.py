"""
Pipeline Guard.

Reliability and quality control for a daily content pipeline:
- Retry and provider fallback for external calls
- Per-stage cost accounting, budget runway and cost alerts
- Stage quality gates and the pre-publish decision
"""

__version__ = "0.1.0"
