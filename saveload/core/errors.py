"""
Exceptions raised by the storage core.

Data problems (corrupt files, renamed types) are recovered where they are
found and only logged. The exceptions below are raised for programming
mistakes in how a graph is saved, and for I/O failures the caller has to
decide about.
"""


class StorageError(Exception):
    """Base exception for storage errors."""


class CrossCapsuleReferenceError(StorageError):
    """Raised when two capsules claim the same object in one save pass."""

    def __init__(self, reference: object, holding_capsule_id: str, saving_capsule_id: str):
        self.reference = reference
        self.holding_capsule_id = holding_capsule_id
        self.saving_capsule_id = saving_capsule_id
        super().__init__(
            f"Save aborted! Reference {reference!r} is saved in capsule "
            f"'{holding_capsule_id}' while capsule '{saving_capsule_id}' is saving it "
            f"now. Capsules must not save cross references."
        )


class StorageFlushError(StorageError):
    """Raised when a capsule file could not be written."""

    def __init__(self, capsule_id: str, cause: BaseException):
        self.capsule_id = capsule_id
        self.cause = cause
        super().__init__(f"Could not save file for capsule '{capsule_id}'. Error: {cause}")


class DisallowedValueError(StorageError, TypeError):
    """Raised when something that is not a value is saved through the value channel."""


class UnreadableValueError(StorageError):
    """Base for stored values that cannot be turned back into live values."""


class UnresolvedTypeError(UnreadableValueError):
    """Raised when a stored type tag no longer names a registered type."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(
            f"No type found for '{type_name}'. The type was removed or renamed; "
            f"migrate the stored data to the new type."
        )


class ValueTypeMismatchError(UnreadableValueError):
    """Raised when a stored value is not of the requested type."""


class DuplicateKeyError(StorageError):
    """Raised when a save callback writes the same key twice."""


class UnregisteredSaveableError(StorageError):
    """Raised when a saveable type has no identifier in the object factory."""


class ResolverDisposedError(StorageError, RuntimeError):
    """Raised when references are used outside of a save or load pass."""


class StorageBusyError(StorageError, RuntimeError):
    """Raised when a save or load is started while another one is running."""
