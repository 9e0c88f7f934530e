"""Error taxonomy for the check-in and streak engine."""


class AccountabilityError(Exception):
    """Base class for engine errors."""


class InvalidConfiguration(AccountabilityError):
    """Malformed recurrence rule or schedule settings. Rejected at input time, never clamped."""


class InvalidInput(AccountabilityError):
    """User-submitted data (responses, relapse dates, sobriety dates) failed validation."""


class InvalidState(AccountabilityError):
    """A computation or transition was asked to run on data violating its precondition."""


class TransientIO(AccountabilityError):
    """Datastore or dispatcher call failed; the next tick retries."""


class OrphanReference(AccountabilityError):
    """An instance or relapse references a parent record that does not exist."""
