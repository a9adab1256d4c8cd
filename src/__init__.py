"""
PSA Ticket Triage.

This package provides a pipeline that retrieves tickets from a PSA
ticketing platform, selects them by id pattern, generates an LLM triage
recommendation for each and writes it back, with bounded retries and a
run summary.
"""

__version__ = "1.0.0"
__author__ = "Automation Engineer"
