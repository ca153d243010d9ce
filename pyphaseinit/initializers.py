import torch as th
import pyphaseinit.linop as pl
import pyphaseinit.algos as algos
from pyphaseinit.errors import (
    DegenerateScaleError,
    DimensionMismatchError,
    InvalidInputError,
)


def _as_measurements(b0) -> th.Tensor:
    if b0 is None:
        raise InvalidInputError("The measurements b0 must be provided.")
    b0 = th.as_tensor(b0)
    if b0.is_complex():
        raise InvalidInputError("Measurements must be real magnitudes.")
    if not b0.is_floating_point():
        b0 = b0.to(th.float64)
    b0 = b0.reshape(-1)
    if b0.numel() == 0:
        raise InvalidInputError("At least one measurement is needed.")
    if (b0 < 0).any():
        raise InvalidInputError("Measurement magnitudes must be non-negative.")
    return b0


def select_small_measurements(b0, gamma: float = 0.5) -> th.Tensor:
    """Boolean mask of the measurements kept to build the null operator.

    The `round(m * gamma)` largest magnitudes are dropped, the others are
    kept. Ties keep their original order (stable sort).
    """
    b0 = _as_measurements(b0)
    if not 0 < gamma < 1:
        raise InvalidInputError(f"gamma must lie in (0, 1), got {gamma}.")

    m = b0.numel()
    _, idx = th.sort(b0, descending=True, stable=True)
    mask = th.zeros(m, dtype=th.bool, device=b0.device)
    mask[idx[round(m * gamma) :]] = True
    return mask


def smallest_eigenvector(
    A: pl.LinOp,
    mask: th.Tensor,
    x_init: th.Tensor,
    method: str = "lanczos",
    n_iter: int = None,
    tol: float = None,
    max_restarts: int = 100,
    callback=lambda x: None,
):
    """Eigenpair of `A^H diag(mask) A` with the smallest eigenvalue."""
    Y = A.T @ pl.Mul(mask.to(x_init.real.dtype)) @ A

    if method == "lanczos":
        return algos.lanczos(
            Y,
            x_init,
            n_iter=n_iter,
            tol=tol,
            max_restarts=max_restarts,
            callback=callback,
        )
    elif method == "power":
        return algos.shifted_power_iteration(
            Y,
            x_init,
            n_iter=5000 if n_iter is None else n_iter,
            tol=tol,
            callback=callback,
        )
    raise InvalidInputError(
        f"Unknown eigensolver {method!r}, expected 'lanczos' or 'power'."
    )


def rescale(A, x0: th.Tensor, b0, mask: th.Tensor):
    """Least-squares magnitude fit on the held-out measurements.

    Solves min_s || s |A x0| - b0 || over the measurements excluded by
    `mask` and returns `(s * x0, s)`.
    """
    b0 = _as_measurements(b0)
    mask = th.as_tensor(mask).to(th.bool).reshape(-1)
    if mask.numel() != b0.numel():
        raise DimensionMismatchError(
            f"The mask has {mask.numel()} entries but b0 holds {b0.numel()} measurements."
        )
    ax_full = (A @ x0).abs().reshape(-1)
    if ax_full.numel() != b0.numel():
        raise DimensionMismatchError(
            f"The operator returns {ax_full.numel()} values but b0 holds {b0.numel()} measurements."
        )

    excluded = (~mask).to(ax_full.dtype)
    b = excluded * b0
    Ax = excluded * ax_full

    eps = th.finfo(Ax.dtype).eps
    if not algos.norm(Ax) > eps * algos.norm(ax_full):
        raise DegenerateScaleError(
            "The estimate has no energy on the held-out measurements, the scale is undefined."
        )
    s = (Ax * b).sum() / (Ax * Ax).sum()
    if not (th.isfinite(s) and s > 0):
        raise DegenerateScaleError(
            f"The least-squares scale is {s.item():.3e}; the held-out measurements carry no magnitude."
        )

    return s * x0, s.item()


def _domain_dtype(op: pl.LinOp, n: int, b0: th.Tensor):
    """First dtype the operator accepts, complex before real.

    Callables do not expose the field of their domain, and torch matmul
    needs matching dtypes, so candidates are tried on a zero vector.
    """
    candidates = [
        th.promote_types(b0.dtype, th.complex64),
        b0.dtype,
        th.complex128,
        th.float64,
        th.complex64,
        th.float32,
    ]
    last_error = None
    for dtype in dict.fromkeys(candidates):
        try:
            op @ th.zeros(n, dtype=dtype, device=b0.device)
        except (RuntimeError, TypeError) as e:
            last_error = e
            continue
        return dtype
    raise InvalidInputError(
        f"The operator cannot be applied to a real or complex vector of length {n}; pass x_init or dtype."
    ) from last_error


def _start_vector(op: pl.LinOp, n: int, b0: th.Tensor, x_init, generator, dtype):
    # a dense operator fixes the field of the signal
    if isinstance(op, pl.Matrix):
        dtype = op.H.dtype
    if x_init is not None:
        x = th.as_tensor(x_init).reshape(-1)
        if x.numel() != n:
            raise DimensionMismatchError(
                f"x_init has {x.numel()} entries, expected {n}."
            )
        if isinstance(op, pl.Matrix):
            if x.is_complex() and not op.H.is_complex():
                raise InvalidInputError("x_init is complex but the matrix is real.")
            return x.to(dtype=dtype, device=op.H.device)
        if not (x.is_floating_point() or x.is_complex()):
            x = x.to(th.float64)
        return x

    device = op.H.device if isinstance(op, pl.Matrix) else b0.device
    if dtype is None:
        dtype = _domain_dtype(op, n, b0)
    return th.randn(n, dtype=dtype, device=device, generator=generator)


def _check_dimensions(op: pl.LinOp, x: th.Tensor, m: int, n: int):
    if op.out_shape != (-1,):
        out_size = op.out_shape[0]
    else:
        y = op @ x
        out_size = y.numel()
        if out_size == m:
            in_size = (op.T @ y).numel()
            if in_size != n:
                raise DimensionMismatchError(
                    f"The adjoint returns {in_size} values, expected {n}."
                )
    if out_size != m:
        raise DimensionMismatchError(
            f"The operator returns {out_size} values but b0 holds {m} measurements."
        )


def null_initializer(
    A,
    At=None,
    b0=None,
    n: int = None,
    verbose: bool = True,
    *,
    gamma: float = 0.5,
    is_scaled: bool = True,
    method: str = "lanczos",
    n_iter: int = None,
    tol: float = None,
    max_restarts: int = 100,
    x_init=None,
    generator: th.Generator = None,
    dtype: th.dtype = None,
) -> th.Tensor:
    """Null initializer for phase retrieval.

    The measurements with large magnitude are thrown out; the sensing vectors
    of the remaining ones are nearly orthogonal to the unknown signal, which
    is then approximated by the vector most orthogonal to them: the
    eigenvector of smallest eigenvalue of `Y = A^H diag(I) A`, `I` selecting
    the small measurements. The result is finally rescaled to match the
    magnitudes of the held-out measurements.

    Reference: P. Chen, A. Fannjiang, G.-R. Liu, "Phase Retrieval with One or
    Two Diffraction Patterns by Alternating Projection with Null
    Initialization", Algorithm 1, arXiv:1510.07379.

    Args:
        A: m x n matrix (tensor, array or nested lists), `LinOp`, or a
            function returning A @ x.
        At: adjoint of `A`, required when `A` is a function.
        b0: the m non-negative measured magnitudes.
        n: signal length, required when `A` is a function.
        verbose: print progress messages.
        gamma: fraction of the measurements thrown out.
        is_scaled: rescale the eigenvector with a least-squares fit.
        method: "lanczos" or "power" eigensolver.
        n_iter: Krylov basis size (lanczos) or iteration cap (power).
        tol: relative residual tolerance of the eigensolver.
        max_restarts: restart cap of the lanczos solver.
        x_init: start vector of the eigensolver, random by default.
        generator: random generator for the start vector.
        dtype: dtype of the random start vector, e.g. a complex dtype for a
            complex signal given through functions.

    Returns:
        x0: vector of length n, the estimate of the signal up to a global
            phase.
    """
    op, n = pl.as_linop(A, At, n)
    b0 = _as_measurements(b0)
    m = b0.numel()

    if verbose:
        print(
            f"Estimating signal of length {n} using a null initializer with {m} measurements..."
        )

    with th.no_grad():
        x = _start_vector(op, n, b0, x_init, generator, dtype)
        _check_dimensions(op, x, m, n)
        mask = select_small_measurements(b0, gamma)

        _, x0 = smallest_eigenvector(
            op,
            mask,
            x,
            method=method,
            n_iter=n_iter,
            tol=tol,
            max_restarts=max_restarts,
        )
        if is_scaled:
            x0, _ = rescale(op, x0, b0, mask)

    if verbose:
        print("Initialization finished.")

    return x0
