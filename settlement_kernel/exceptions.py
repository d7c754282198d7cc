"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected operation must tell the caller *what kind* of rejection it was,
because the recovery differs per category:

  - ValidationError          -> caller corrects the input and retries
  - AuthorizationError       -> only the right actor can retry
  - StateError               -> caller is out of sync; refetch state first
  - ConflictError            -> lost a race; refetch and retry
  - NotFoundError            -> unknown identifier

None of these is fatal.  Each one is a rejected operation against otherwise
consistent state; the session is rolled back before the error surfaces.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementError (base)
    |
    +-- ValidationError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedError
    |   +-- WrongSignerError
    |
    +-- StateError
    |   +-- InvalidTransitionError
    |   +-- DeedNotExecutedError
    |   +-- AlreadyMintedError
    |   +-- DeedAlreadyExistsError
    |
    +-- ConflictError
    |
    +-- NotFoundError
        +-- BillNotFoundError
        +-- DeedNotFoundError
        +-- NoteNotFoundError
        +-- NotificationNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                  | When Raised
----------------|-----------------------|------------------------------------------
Validation      | VALIDATION_ERROR      | Malformed or out-of-range payload
----------------|-----------------------|------------------------------------------
Authorization   | UNAUTHORIZED          | Role/identity not permitted for action
                | WRONG_SIGNER          | Deed is not waiting for this signer
----------------|-----------------------|------------------------------------------
State           | INVALID_TRANSITION    | Current status is not a permitted source
                | DEED_NOT_EXECUTED     | Note requested for non-executed deed
                | ALREADY_MINTED        | Note is no longer a draft
                | DEED_ALREADY_EXISTS   | Bill already has a live deed
----------------|-----------------------|------------------------------------------
Concurrency     | CONFLICT              | Lost optimistic update / lock timeout
----------------|-----------------------|------------------------------------------
Lookup          | NOT_FOUND             | Unknown bill/deed/note/notification id

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        deed_service.sign_deed(deed_id, SignerRole.ASSIGNOR, wallet, actor)
    except WrongSignerError as e:
        # Another party signs first; show e.current_status
        ...
    except ConflictError:
        # Refetch and retry
        ...

The orchestrator converts any SettlementError into a structured
``OperationResult`` carrying ``e.code`` and the exception's attributes.
"""


class SettlementError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_ERROR"


# Validation


class ValidationError(SettlementError):
    """Payload is malformed or out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Authorization


class AuthorizationError(SettlementError):
    """Base exception for role and turn mismatches."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedError(AuthorizationError):
    """Acting identity or role is not permitted to perform the action."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, role: str, action: str, reason: str = ""):
        self.actor_id = actor_id
        self.role = role
        self.action = action
        self.reason = reason
        message = f"Actor {actor_id} with role '{role}' may not {action}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class WrongSignerError(AuthorizationError):
    """Deed is not waiting for a signature from this signer role."""

    code: str = "WRONG_SIGNER"

    def __init__(self, deed_id: str, signer_role: str, current_status: str):
        self.deed_id = deed_id
        self.signer_role = signer_role
        self.current_status = current_status
        super().__init__(
            f"Deed {deed_id} is not ready for {signer_role} signature. "
            f"Current status: {current_status}"
        )


# State preconditions


class StateError(SettlementError):
    """Base exception for state-precondition violations."""

    code: str = "STATE_ERROR"


class InvalidTransitionError(StateError):
    """Entity's current status does not permit the requested action."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        current_status: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.action = action
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in status '{current_status}'"
        )


class DeedNotExecutedError(StateError):
    """Receivable note requested for a deed that is not fully executed."""

    code: str = "DEED_NOT_EXECUTED"

    def __init__(self, deed_id: str, current_status: str):
        self.deed_id = deed_id
        self.current_status = current_status
        super().__init__(
            f"Cannot generate receivable note for deed {deed_id}: "
            f"status is '{current_status}', not fully executed"
        )


class AlreadyMintedError(StateError):
    """Note has already left the draft state."""

    code: str = "ALREADY_MINTED"

    def __init__(self, note_id: str, current_status: str):
        self.note_id = note_id
        self.current_status = current_status
        super().__init__(
            f"Note {note_id} has already been minted (status '{current_status}')"
        )


class DeedAlreadyExistsError(StateError):
    """Bill already has a deed that is not rejected."""

    code: str = "DEED_ALREADY_EXISTS"

    def __init__(self, bill_id: str, deed_id: str):
        self.bill_id = bill_id
        self.deed_id = deed_id
        super().__init__(f"Bill {bill_id} already has live deed {deed_id}")


# Concurrency


class ConflictError(SettlementError):
    """
    Concurrent modification detected.

    Raised when an optimistic version check fails or the per-entity lock
    cannot be acquired within the configured timeout.
    """

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, reason: str = "concurrent modification"):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Conflict on {entity_type} {entity_id}: {reason}")


# Lookup


class NotFoundError(SettlementError):
    """Identifier does not resolve to a record."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class BillNotFoundError(NotFoundError):
    entity_type = "Bill"


class DeedNotFoundError(NotFoundError):
    entity_type = "Deed"


class NoteNotFoundError(NotFoundError):
    entity_type = "ReceivableNote"


class NotificationNotFoundError(NotFoundError):
    entity_type = "Notification"
