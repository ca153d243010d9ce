class InitializationError(Exception):
    """Base class of the errors raised while computing an initial estimate."""


class InvalidInputError(InitializationError, ValueError):
    """Operator or measurements given in a form that cannot be used
    (e.g. a callable operator without its adjoint or signal length)."""


class DimensionMismatchError(InitializationError, ValueError):
    """Operator range/domain inconsistent with the measurements or vectors."""


class ConvergenceError(InitializationError, RuntimeError):
    """The eigensolver exhausted its iteration budget."""

    def __init__(self, message, residual=None, n_iter=None):
        super().__init__(message)
        self.residual = residual
        self.n_iter = n_iter


class DegenerateScaleError(InitializationError, ArithmeticError):
    """The least-squares magnitude fit has no meaningful solution."""
