"""
Backend package for survey settlement.

This package provides a FastAPI application with database and queue
abstractions for reviewing survey cancellation requests and refunding
creators for the budget their surveys did not use.
"""
