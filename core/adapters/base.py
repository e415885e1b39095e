from abc import ABC, abstractmethod

from ..models import AnalysisResult, CanonicalJob


class SourceAdapter(ABC):
    """
    Read-only access to one legacy job framework.

    Implementations own their store client for the duration of one
    ``analyze``/``export`` call and keep no state between calls apart from the
    ``skipped`` counter of the last run.
    """

    source: str = ""

    def __init__(self):
        self.skipped = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def analyze(self) -> AnalysisResult:
        pass

    @abstractmethod
    def export(self) -> list[CanonicalJob]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class AdapterFactory:
    def __init__(self):
        self._adapters = {}

    def register(self, name: str, adapter_class):
        self._adapters[name] = adapter_class

    def create_adapter(self, name: str, url: str, timeout: float = 30.0) -> SourceAdapter:
        adapter_class = self._adapters.get(name)
        if adapter_class is None:
            supported = ", ".join(self.get_supported_sources())
            raise ValueError(f"unsupported source: {name} (supported: {supported})")
        return adapter_class.from_url(url, timeout=timeout)

    def get_supported_sources(self) -> list[str]:
        return sorted(self._adapters)


adapter_factory = AdapterFactory()
