import torch as th
import pyphaseinit.linop as pl
from pyphaseinit.errors import ConvergenceError


def inner(a, b):
    return (a.conj() * b).sum()


def norm(a):
    return (a.abs() ** 2).sum().sqrt()


def default_tol(x: th.Tensor) -> float:
    return max(1e-10, 100 * th.finfo(x.real.dtype).eps)


def power_iteration(A, x0, n_iter=10, tol=None, callback=lambda x: None):
    x = x0 / norm(x0)
    val = None

    for _ in range(n_iter):
        ax = A @ x
        new_val = inner(x, ax).real
        ax_norm = norm(ax)
        if ax_norm == 0:
            break
        x = ax / ax_norm
        callback(x)

        if tol is not None and val is not None and (new_val - val).abs() <= tol * new_val.abs():
            break
        val = new_val

    return x


def shifted_power_iteration(
    A,
    x0: th.Tensor,
    n_iter: int = 5000,
    tol: float = None,
    callback=lambda x: None,
):
    """Smallest eigenpair of a Hermitian positive semi-definite operator.

    The largest eigenvalue is estimated first and the power method is run on
    `sigma * Id - A`, with `sigma` just above it, whose dominant eigenvector is
    the smallest one of `A`.
    """
    x = x0 / norm(x0)
    tol = max(1e-8, default_tol(x)) if tol is None else tol

    v = power_iteration(A, x, n_iter=100, tol=1e-4)
    lambda_max = inner(v, A @ v).real
    if not lambda_max > 0:
        # A vanishes, any vector is an eigenvector
        return 0.0, x
    sigma = 1.1 * lambda_max.item()
    B = sigma * pl.Id() - A

    residual = float("inf")
    for _ in range(n_iter):
        bx = B @ x
        if bx.is_complex() and not x.is_complex():
            x = x.to(bx.dtype)
        ax = sigma * x - bx
        theta = inner(x, ax).real
        residual = norm(ax - theta * x).item()
        callback(x)
        if residual <= tol * sigma:
            return theta.item(), x
        x = bx / norm(bx)

    raise ConvergenceError(
        f"Shifted power iteration did not converge in {n_iter} iterations "
        f"(residual {residual:.3e}, tolerance {tol * sigma:.3e}).",
        residual=residual,
        n_iter=n_iter,
    )


def lanczos(
    A,
    x0: th.Tensor,
    n_iter: int = None,
    tol: float = None,
    max_restarts: int = 100,
    callback=lambda x: None,
):
    """Smallest eigenpair of a Hermitian operator.

    Restarted Lanczos with full reorthogonalization. Each cycle builds a
    Krylov basis of at most `n_iter` vectors (default `min(n, 64)`) from the
    current start vector; the smallest Ritz vector of the cycle seeds the
    next one. The operator is only accessed through `A @ x`.

    Returns the eigenvalue and a unit-norm eigenvector. Raises
    `ConvergenceError` when the residual `||A y - theta y||` is still above
    `tol * ||A||` after `max_restarts` cycles.
    """
    if max_restarts < 1:
        raise ValueError("max_restarts must be at least 1.")
    n = x0.numel()
    k = min(n, 64) if n_iter is None else max(1, min(n_iter, n))

    x = x0 / norm(x0)
    ax = A @ x
    if ax.is_complex() and not x.is_complex():
        x = x.to(ax.dtype)
    tol = default_tol(x) if tol is None else tol
    eps = th.finfo(x.real.dtype).eps

    anorm = 0.0
    residual = float("inf")
    for _ in range(max_restarts):
        V = [x]
        alphas, betas = [], []
        w = ax
        for j in range(k):
            alpha = inner(V[j], w).real
            w = w - alpha * V[j]
            if j > 0:
                w = w - betas[j - 1] * V[j - 1]
            Q = th.stack(V, dim=1)
            # twice is enough
            w = w - Q @ (Q.conj().T @ w)
            w = w - Q @ (Q.conj().T @ w)
            beta = norm(w)
            alphas.append(alpha.item())
            anorm = max(anorm, abs(alphas[-1]) + beta.item())

            if j == k - 1 or beta <= n * eps * anorm:
                break
            betas.append(beta.item())
            V.append(w / beta)
            w = A @ V[-1]

        T = th.diag(th.tensor(alphas, dtype=x.real.dtype))
        if betas:
            off = th.tensor(betas, dtype=x.real.dtype)
            T = T + th.diag(off, 1) + th.diag(off, -1)
        ritz_values, ritz_vectors = th.linalg.eigh(T)
        anorm = max(anorm, ritz_values.abs().max().item())

        Q = th.stack(V, dim=1)
        y = Q @ ritz_vectors[:, 0].to(Q.dtype)
        y = y / norm(y)
        ay = A @ y
        theta = inner(y, ay).real
        residual = norm(ay - theta * y).item()
        callback(y)

        if residual <= tol * anorm:
            return theta.item(), y
        x, ax = y, ay

    raise ConvergenceError(
        f"Lanczos did not converge after {max_restarts} restarts "
        f"(residual {residual:.3e}, tolerance {tol * anorm:.3e}).",
        residual=residual,
        n_iter=max_restarts,
    )
