from typing import Protocol, runtime_checkable


@runtime_checkable
class BackendConfig[B](Protocol):
    @property
    def type(self) -> str: ...

    def missing_credentials(self) -> tuple[str, ...]: ...

    async def create_backend(self) -> B: ...
