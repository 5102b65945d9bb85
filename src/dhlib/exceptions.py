from typing import cast


class DhRuntimeError(RuntimeError):
    @property
    def message(self) -> str:
        return cast("str", self.args[0])


class DhSubstitutionError(DhRuntimeError):
    def __init__(self, message: str, location: str) -> None:
        super().__init__(message, location)

    @property
    def location(self) -> str:
        return cast("str", self.args[1])
