class LinedeskError(Exception):
    """Base error for the responder."""


class ConfigurationError(LinedeskError):
    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing or invalid settings: {', '.join(missing)}")


class KnowledgeFormatError(LinedeskError):
    pass


class SnapshotError(LinedeskError):
    pass
