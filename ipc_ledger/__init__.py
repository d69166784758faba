"""
IPC Ledger: financial ledger for construction-contract Interim Payment
Certificates (BOQ progress, deductions, advance payment, retention
release, previous-value corrections and the IPC wizard).
"""

__version__ = "1.0.0"
