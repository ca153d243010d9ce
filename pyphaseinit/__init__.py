from pyphaseinit.errors import (
    ConvergenceError,
    DegenerateScaleError,
    DimensionMismatchError,
    InitializationError,
    InvalidInputError,
)
from pyphaseinit.initializers import (
    null_initializer,
    rescale,
    select_small_measurements,
    smallest_eigenvector,
)
