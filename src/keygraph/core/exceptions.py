"""Exception hierarchy.

Expected, locally recovered failures (a join that cannot be analyzed) and
fail-fast failures (the metadata store is unreachable) get distinct types so
callers can tell them apart.
"""


class KeygraphError(Exception):
    """Base class for all keygraph errors."""


class ConfigurationError(KeygraphError):
    """Invalid or missing configuration."""


class RepositoryError(KeygraphError):
    """Reading or writing schema metadata failed.

    Never recovered inside discovery: a run that cannot persist its edges
    must not report them as written.
    """


class ValidatorError(KeygraphError):
    """A statistics query against the customer database failed."""


class JoinAnalysisError(ValidatorError):
    """The join validator could not analyze a column pair."""

    def __init__(self, source: str, target: str, reason: str):
        self.source = source
        self.target = target
        self.reason = reason
        super().__init__(f"join analysis failed for {source} -> {target}: {reason}")
