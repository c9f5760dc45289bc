class EngineError(RuntimeError):
    pass


class ConflictError(EngineError):
    """An open activity session or combat already exists for the character."""


class TurnInProgressError(ConflictError):
    pass


class StaleSessionError(EngineError):
    """The compare-and-set marker moved underneath the caller; recompute and retry."""


class StaleRetryExhaustedError(EngineError):
    pass


class ValidationError(EngineError):
    pass


class NoActiveSessionError(EngineError):
    pass


class NoActiveCombatError(EngineError):
    pass


class EngineInvariantError(EngineError):
    pass
