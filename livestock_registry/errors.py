"""
Registry error taxonomy

Every failure raised by the registry core is a RegistryError subclass with a
stable ``kind`` string, so callers (and the HTTP layer) can decide what to
retry or how to report it without parsing messages.

- Validation errors are raised before any write and are never retried.
- Invariant conflicts may be transient under contention.
- Not-found errors are terminal.
- Access errors never reveal whether the resource exists.
- Storage errors come from the store; only TransientStorageError is retryable.
"""

from typing import Optional


class RegistryError(Exception):
    kind = "registry_error"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.kind.replace("_", " ").capitalize())

    @property
    def message(self) -> str:
        return str(self)


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationFailed(RegistryError):
    kind = "validation_failed"


class SpeciesMismatch(ValidationFailed):
    kind = "species_mismatch"

    def __init__(self, animal_species: str, pen_species: str):
        super().__init__(f"Animal species '{animal_species}' does not match pen species '{pen_species}'")
        self.animal_species = animal_species
        self.pen_species = pen_species


class InvalidFilter(ValidationFailed):
    kind = "invalid_filter"


class InvalidParentage(ValidationFailed):
    kind = "invalid_parentage"


class InvalidTransition(ValidationFailed):
    kind = "invalid_transition"


class DuplicateTag(ValidationFailed):
    kind = "duplicate_tag"

    def __init__(self, tag: str):
        super().__init__(f"Tag '{tag}' is already in use")
        self.tag = tag


class DuplicatePenName(ValidationFailed):
    kind = "duplicate_pen_name"

    def __init__(self, name: str):
        super().__init__(f"Pen name '{name}' already exists")
        self.name = name


class PenNotEmpty(ValidationFailed):
    kind = "pen_not_empty"


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFound(RegistryError):
    kind = "not_found"


class AnimalNotFound(NotFound):
    kind = "animal_not_found"

    def __init__(self, animal_id: int):
        super().__init__(f"Animal {animal_id} not found")
        self.animal_id = animal_id


class PenNotFound(NotFound):
    kind = "pen_not_found"

    def __init__(self, pen_id: int):
        super().__init__(f"Pen {pen_id} not found")
        self.pen_id = pen_id


class AssignmentNotFound(NotFound):
    kind = "assignment_not_found"

    def __init__(self, assignment_id: int):
        super().__init__(f"Pen assignment {assignment_id} not found")
        self.assignment_id = assignment_id


class MortalityRecordNotFound(NotFound):
    kind = "mortality_record_not_found"

    def __init__(self, animal_id: int):
        super().__init__(f"No mortality record for animal {animal_id}")
        self.animal_id = animal_id


# =============================================================================
# INVARIANT CONFLICTS
# =============================================================================

class InvariantConflict(RegistryError):
    kind = "invariant_conflict"


class CapacityExceeded(InvariantConflict):
    kind = "capacity_exceeded"

    def __init__(self, pen_id: int, capacity: int, occupancy: int):
        super().__init__(f"Pen {pen_id} is at full capacity ({occupancy}/{capacity})")
        self.pen_id = pen_id
        self.capacity = capacity
        self.occupancy = occupancy


class ConcurrentConflictExhausted(InvariantConflict):
    kind = "concurrent_conflict_exhausted"

    def __init__(self, operation: str, attempts: int):
        super().__init__(f"{operation} gave up after {attempts} conflicting attempts")
        self.operation = operation
        self.attempts = attempts


class AlreadyDeceased(InvariantConflict):
    kind = "already_deceased"

    def __init__(self, animal_id: int):
        super().__init__(f"Animal {animal_id} is already deceased")
        self.animal_id = animal_id


# =============================================================================
# AUTHORIZATION
# =============================================================================

class AccessDenied(RegistryError):
    kind = "access_denied"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Access denied")


# =============================================================================
# STORAGE
# =============================================================================

class StorageError(RegistryError):
    kind = "storage_error"


class TransientStorageError(StorageError):
    """Lock timeout, serialization failure, deadlock or lost connection.

    The surrounding transaction is known to have rolled back, so retrying the
    whole transaction is safe.
    """

    kind = "transient_storage_error"
    retryable = True


class UniqueViolation(StorageError):
    kind = "unique_violation"

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class ConstraintViolation(StorageError):
    kind = "constraint_violation"


class StorageUnavailable(StorageError):
    kind = "storage_unavailable"


class IndeterminateFailure(StorageError):
    """The commit may or may not have been applied; the caller must reconcile."""

    kind = "indeterminate_failure"
