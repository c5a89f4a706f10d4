"""Supply-chain triage: decide which units deserve deep LLM analysis, cache
the results by content fingerprint, and rank everything by risk."""

__version__ = "0.3.0"
