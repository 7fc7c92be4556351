"""
Survey intake backend.

A FastAPI service that stores one business-metrics survey per restaurant,
lets the submitter revise it a bounded number of times, and gives admins
paged listing and CSV export.
"""
