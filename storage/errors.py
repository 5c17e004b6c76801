"""Storage-layer exceptions shared by the MongoDB and in-memory backends."""


class StorageError(Exception):
    """Base class for expected storage failures."""


class NotFoundError(StorageError):
    """The referenced user or task does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class DuplicateEmailError(StorageError):
    """Another user already owns this email address."""

    def __init__(self, address: str):
        super().__init__("Email already registered")
        self.address = address
