"""Blueprint error taxonomy."""


class BlueprintError(Exception):
    """Base exception for blueprint processing errors."""

    def __init__(self, message: str, blueprint: str | None = None):
        self.message = message
        self.blueprint = blueprint
        super().__init__(self.message)


class BlueprintSchemaError(BlueprintError):
    """Malformed blueprint metadata."""

    pass


class ResolutionError(BlueprintError):
    """Function call, expression or dependency resolution failed."""

    pass


class CompositionError(BlueprintError):
    """Included blueprint not found or cyclic inclusion."""

    pass


class RepositoryError(BlueprintError):
    """Fetching or reading blueprint content failed."""

    def __init__(self, message: str, path: str | None = None, operation: str | None = None):
        self.path = path
        self.operation = operation
        super().__init__(message)


class RenderError(BlueprintError):
    """Template rendering or output writing failed."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)
