SOURCE_LABELS = {
    "countries": "Countries API",
    "exchange_rates": "Exchange rates API",
}


class CountryCacheError(Exception):
    """Base class for every error raised by the country cache."""


class ConfigurationError(CountryCacheError):
    pass


class SourceUnavailable(CountryCacheError):
    """An upstream fetch failed, timed out or returned an unusable payload.

    ``source`` is either ``"countries"`` or ``"exchange_rates"`` so callers
    can tell which provider to blame. Nothing has been written when this
    is raised.
    """

    def __init__(self, source: str, detail: str = ""):
        self.source = source
        self.detail = detail
        super().__init__(f"{self.label} unavailable: {detail}" if detail else f"{self.label} unavailable")

    @property
    def label(self) -> str:
        return SOURCE_LABELS.get(self.source, self.source)


class PersistenceFailure(CountryCacheError):
    """The store rejected a write or could not be reached."""


class RenderFailure(CountryCacheError):
    """The summary image could not be produced. Never reaches the caller."""


class RecordNotFound(CountryCacheError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Country {name!r} not found")
