#!/usr/bin/env python3


class PhagecorrError(Exception):
    """Base class for errors raised by phagecorr."""


class SchemaMismatch(PhagecorrError, ValueError):
    """Rank, entity or column names that cannot be resolved against a table."""

    def __init__(self, missing, where="table"):
        self.missing = list(missing)
        self.where = where
        super().__init__(
            f"Unresolvable names in {where}: {', '.join(map(str, self.missing))}"
        )


class InsufficientSamples(PhagecorrError, ValueError):
    """Too few samples for a rank correlation to mean anything."""

    def __init__(self, n_samples, minimum):
        self.n_samples = n_samples
        self.minimum = minimum
        super().__init__(
            f"{n_samples} samples available, at least {minimum} required for correlation."
        )


class NoSuccessfulComparisons(PhagecorrError, RuntimeError):
    """Every (level pair, cohort) comparison failed."""
