# sake/core/errors.py


class SakeError(Exception):
    """Base class for every failure the CLI reports as a one-line diagnostic."""


class SourceUnavailable(SakeError):
    """A definition source (file, URL or stdin) could not be read."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"`{source}' is not available: {reason}")


class DefinitionSyntaxError(SakeError):
    """Definition text is not valid task-file syntax."""

    def __init__(self, message: str, line: int | None = None, source: str | None = None):
        self.line = line
        self.source = source
        where = ""
        if source:
            where = f"{source}:"
        if line is not None:
            where = f"{where}{line}:"
        super().__init__(f"{where} {message}" if where else message)


class SandboxViolation(SakeError):
    """A top-level statement tried to do something with side effects while being parsed."""

    def __init__(self, operation: str, line: int, source: str | None = None):
        self.operation = operation
        self.line = line
        self.source = source
        where = f"{source}:{line}" if source else f"line {line}"
        super().__init__(f"refusing to load `{operation}' at {where} outside of a task body")


class TaskNotFound(SakeError):
    def __init__(self, name: str, source: str | None = None):
        self.name = name
        self.source = source
        if source:
            super().__init__(f"Task `{name}' not found in `{source}' or the store")
        else:
            super().__init__(f"Task `{name}' not found")


class TaskAlreadyExists(SakeError):
    def __init__(self, name: str, store_path: str):
        self.name = name
        self.store_path = store_path
        super().__init__(f"Task `{name}' already exists in {store_path}")


class HomeResolutionFailure(SakeError):
    """No per-user location could be determined for the store file."""


class PublishFailure(SakeError):
    """The paste service rejected or never answered an upload."""


# Failures the listing command treats as "that was not a file, it was a pattern".
PARSE_ERRORS: tuple[type[SakeError], ...] = (
    SourceUnavailable,
    DefinitionSyntaxError,
    SandboxViolation,
)
