import torch as th
import unittest
import pyphaseinit.algos as algos
import pyphaseinit.linop as linop
from pyphaseinit.errors import ConvergenceError


def random_psd(n, dtype=th.float64, rank=None):
    B = th.randn(n, rank or 2 * n, dtype=dtype)
    return B @ B.T.conj()


def alignment(x, y):
    return (algos.inner(x, y).abs() / (algos.norm(x) * algos.norm(y))).item()


class TestLanczos(unittest.TestCase):
    def setUp(self):
        th.manual_seed(0)

    def test_smallest_eigenpair_real(self):
        M = random_psd(30)
        evals, evecs = th.linalg.eigh(M)
        theta, y = algos.lanczos(linop.Matrix(M), th.randn(30, dtype=th.float64))
        self.assertAlmostEqual(theta, evals[0].item(), places=8)
        self.assertGreater(alignment(y, evecs[:, 0]), 1 - 1e-8)
        self.assertAlmostEqual(algos.norm(y).item(), 1.0, places=12)

    def test_smallest_eigenpair_complex(self):
        M = random_psd(20, dtype=th.complex128)
        evals, evecs = th.linalg.eigh(M)
        theta, y = algos.lanczos(linop.Matrix(M), th.randn(20, dtype=th.complex128))
        self.assertAlmostEqual(theta, evals[0].item(), places=8)
        self.assertGreater(alignment(y, evecs[:, 0]), 1 - 1e-8)

    def test_real_start_on_complex_operator(self):
        M = random_psd(10, dtype=th.complex128)
        evals, _ = th.linalg.eigh(M)
        theta, y = algos.lanczos(linop.Matrix(M), th.randn(10, dtype=th.float64))
        self.assertTrue(y.is_complex())
        self.assertAlmostEqual(theta, evals[0].item(), places=8)

    def test_restarts(self):
        n = 200
        eigenvalues = th.cat(
            [th.tensor([0.01], dtype=th.float64), th.linspace(0.02, 2.0, n - 1, dtype=th.float64)]
        )
        U, _ = th.linalg.qr(th.randn(n, n, dtype=th.float64))
        M = U @ th.diag(eigenvalues) @ U.T
        restarts = []
        theta, y = algos.lanczos(
            linop.Matrix(M),
            th.randn(n, dtype=th.float64),
            n_iter=20,
            tol=1e-9,
            callback=restarts.append,
        )
        self.assertGreater(len(restarts), 1)
        self.assertAlmostEqual(theta, 0.01, places=8)
        self.assertGreater(alignment(y, U[:, 0]), 1 - 1e-8)

    def test_one_dimensional(self):
        theta, y = algos.lanczos(linop.Matrix(th.tensor([[3.0]], dtype=th.float64)), th.ones(1, dtype=th.float64))
        self.assertAlmostEqual(theta, 3.0)
        self.assertAlmostEqual(y.abs().item(), 1.0)

    def test_zero_operator(self):
        theta, y = algos.lanczos(linop.Matrix(th.zeros(4, 4, dtype=th.float64)), th.randn(4, dtype=th.float64))
        self.assertEqual(theta, 0.0)
        self.assertAlmostEqual(algos.norm(y).item(), 1.0)

    def test_budget_exhausted(self):
        n = 300
        eigenvalues = th.linspace(0.0, 1.0, n, dtype=th.float64)
        with self.assertRaises(ConvergenceError) as err:
            algos.lanczos(
                linop.Matrix(th.diag(eigenvalues)),
                th.randn(n, dtype=th.float64),
                n_iter=3,
                tol=1e-14,
                max_restarts=2,
            )
        self.assertEqual(err.exception.n_iter, 2)
        self.assertGreater(err.exception.residual, 0)


class TestPowerIteration(unittest.TestCase):
    def setUp(self):
        th.manual_seed(0)

    def test_largest_eigenvector(self):
        M = th.diag(th.tensor([0.5, 1.0, 4.0], dtype=th.float64))
        x = algos.power_iteration(linop.Matrix(M), th.ones(3, dtype=th.float64), n_iter=200)
        self.assertGreater(x[2].abs().item(), 1 - 1e-10)

    def test_shifted_smallest_eigenpair(self):
        M = th.diag(th.tensor([0.1, 1.0, 2.0, 3.0], dtype=th.float64))
        theta, y = algos.shifted_power_iteration(linop.Matrix(M), th.randn(4, dtype=th.float64))
        self.assertAlmostEqual(theta, 0.1, places=6)
        self.assertGreater(y[0].abs().item(), 1 - 1e-6)

    def test_shifted_budget_exhausted(self):
        M = th.diag(th.linspace(0.0, 1.0, 100, dtype=th.float64))
        with self.assertRaises(ConvergenceError):
            algos.shifted_power_iteration(linop.Matrix(M), th.randn(100, dtype=th.float64), n_iter=5)


if __name__ == "__main__":
    unittest.main()
