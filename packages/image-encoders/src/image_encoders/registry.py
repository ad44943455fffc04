from .types import EncoderBackend


class CapabilityRegistry:
    """
    The set of encoder backends currently available to the host.

    Backends can be swapped at runtime, so capability answers are computed on
    every call and never cached.
    """

    def __init__(self, backends: list[EncoderBackend] | None = None):
        self._backends: list[EncoderBackend] = list(backends or [])

    def get_backends(self) -> list[EncoderBackend]:
        return list(self._backends)

    def set_backends(self, backends: list[EncoderBackend]) -> None:
        self._backends = list(backends)

    def register(self, backend: EncoderBackend) -> None:
        if not isinstance(backend, EncoderBackend):
            raise ValueError("backend must implement EncoderBackend")
        self._backends.append(backend)

    def clear(self) -> None:
        self._backends = []

    def has_backends(self) -> bool:
        return len(self._backends) > 0

    def supports(self, mime_type: str) -> bool:
        return self.get_backend(mime_type) is not None

    def get_backend(self, mime_type: str) -> EncoderBackend | None:
        for backend in self._backends:
            if backend.supports_mime_type(mime_type):
                return backend
        return None
