"""Loan-application workflows built from the orchestration primitives."""
