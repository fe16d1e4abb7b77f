"""Execution primitives: retry budgets, cancellation and parallel batches.

Import from the submodules directly (``loanflow.execution.retry``);
``retry`` depends on the poll outcome types in orchestration.
"""
