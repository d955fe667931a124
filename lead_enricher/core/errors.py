"""Error taxonomy shared by the enrichment pipeline."""


class EnrichmentError(RuntimeError):
    """Base class for pipeline errors."""


class TransportError(EnrichmentError):
    """Navigation, selector wait or network failure; always recoverable."""


class ValidationError(EnrichmentError):
    """Malformed input item (URL, source row); the item is discarded."""


class ExhaustionError(EnrichmentError):
    """Every query on every search surface came back without an accepted candidate."""


class FatalInitError(EnrichmentError):
    """The shared browser session could not be started."""
