"""
exceptions.py
--------------
Error taxonomy for the engine.

Only collaborator failures and transaction shape problems get their own
types. An empty input to baseline aggregation is not an error: it is the
None sentinel returned by compute_baseline().
"""


class GamblingEngineError(Exception):
    """Base class for engine errors."""


class LookupUnavailable(GamblingEngineError):
    """
    A collaborator (ledger, crowdsourced registry) could not answer.

    Callers inside the engine degrade the affected signal to "absent";
    this is never surfaced from resolve() or classify().
    """


class MalformedTransaction(GamblingEngineError):
    """A transaction is missing the amount or timestamp needed to classify it."""
