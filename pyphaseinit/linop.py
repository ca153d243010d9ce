import numbers

import numpy as np
import torch as th
from pyphaseinit.base_linop import LinOp
from pyphaseinit.errors import InvalidInputError


class Matrix(LinOp):
    def __init__(self, matrix):
        if isinstance(matrix, np.ndarray):
            matrix = th.as_tensor(matrix)
        if not (matrix.is_floating_point() or matrix.is_complex()):
            matrix = matrix.to(th.float64)
        self.H = matrix
        self.in_shape = (matrix.shape[1],)
        self.out_shape = (matrix.shape[0],)

    def apply(self, x):
        return self.H @ x

    def applyT(self, x):
        return self.H.T.conj() @ x


class Mul(LinOp):
    """coefs is for element-wise multiplication"""

    def __init__(self, coefs):
        self.coefs = coefs
        self.in_shape = coefs.shape
        self.out_shape = coefs.shape

    def apply(self, x):
        return self.coefs * x

    def applyT(self, x):
        return self.coefs.conj() * x


class Id(LinOp):
    def __init__(self):
        self.in_shape = (-1,)
        self.out_shape = (-1,)

    def apply(self, x):
        return x

    def applyT(self, x):
        return x


class Function(LinOp):
    """Wraps a pair of caller-supplied callables.

    `forward` maps a length-n vector to the measurement space and `adjoint`
    must be its exact conjugate transpose. The output size is unknown until
    the operator is applied once.
    """

    def __init__(self, forward, adjoint, n: int):
        self.forward = forward
        self.adjoint = adjoint
        self.in_shape = (n,)
        self.out_shape = (-1,)

    def apply(self, x):
        return th.as_tensor(self.forward(x)).reshape(-1)

    def applyT(self, x):
        return th.as_tensor(self.adjoint(x)).reshape(-1)


def _is_dense(A) -> bool:
    return isinstance(A, (th.Tensor, np.ndarray))


def as_linop(A, At=None, n=None) -> tuple[LinOp, int]:
    """Normalize a sensing operator into a `LinOp` and its input length.

    A dense matrix gives `n` from its column count, and `At`/`n` are ignored.
    A callable needs both its adjoint `At` and the signal length `n`.
    """
    if isinstance(A, (list, tuple)):
        A = np.asarray(A)

    if _is_dense(A):
        if A.ndim != 2:
            raise InvalidInputError(
                f"A dense operator must be a 2-d matrix, got {A.ndim} dimensions."
            )
        op = Matrix(A)
        return op, op.in_shape[0]

    if isinstance(A, LinOp):
        if n is None:
            if A.in_shape == (-1,):
                raise InvalidInputError(
                    "The signal length n must be given for an operator of unknown input size."
                )
            n = A.in_shape[0]
        _check_length(n)
        return A, int(n)

    if callable(A):
        if At is None or not callable(At):
            raise InvalidInputError(
                "The adjoint At must be provided when A is a function."
            )
        if n is None:
            raise InvalidInputError(
                "The signal length n must be provided when A is a function."
            )
        _check_length(n)
        return Function(A, At, int(n)), int(n)

    raise InvalidInputError(
        f"A must be a matrix, a LinOp or a callable, got {type(A).__name__}."
    )


def _check_length(n):
    if isinstance(n, bool) or not isinstance(n, numbers.Integral) or n <= 0:
        raise InvalidInputError(f"The signal length n must be a positive integer, got {n!r}.")
