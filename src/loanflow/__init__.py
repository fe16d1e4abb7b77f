"""
loanflow - drive loan applications through review stages and reconcile
their lead records across the lending and calling systems.

Subpackages:
- loanflow.core: errors, Result envelope, protocols, logging, settings
- loanflow.execution: retry budgets, cancellation, parallel batches
- loanflow.orchestration: stage sequences, poller, workflow driver, chains
- loanflow.adapters: SQL stores, HTTP trigger actuators, health checks
- loanflow.domain: the review workflow and the VKYC_NOTRY lead chain
"""

__version__ = "0.3.0"

from loanflow.core.errors import LoanflowError
from loanflow.core.result import Err, Ok, Result

__all__ = ["Err", "LoanflowError", "Ok", "Result", "__version__"]
