"""Orchestration: stage sequences, transition polling, the workflow
driver and reconciliation chains.

Import from the submodules (``loanflow.orchestration.driver``,
``loanflow.orchestration.chain``).
"""
