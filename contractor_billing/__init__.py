"""
Contractor Billing - Source Package

Invoice lifecycle and consistency engine for an independent
contractor's billing: clients, projects, timesheets, expenses
and the invoices built from them.

DESIGN PRINCIPLES:
1. Source records are frozen into invoice lines, then locked
2. Nothing is written until every check has passed
3. Every multi-step write can be undone step by step
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Contractor Billing Team"
