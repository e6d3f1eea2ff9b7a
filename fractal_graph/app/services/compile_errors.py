from __future__ import annotations


class CompilationError(Exception):
    def __init__(self, diagnostics: list[str]):
        self.diagnostics = diagnostics
        super().__init__("Formula compilation failed")


class GraphCycleError(CompilationError):
    """Raised when linearization finds nodes left with inbound edges."""


class GraphEditError(Exception):
    def __init__(self, message: str, status_code: int = 422):
        self.message = message
        self.status_code = status_code
        super().__init__(message)
