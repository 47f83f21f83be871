"""
Unit tests for the L-BFGS memory and the two-loop recursion.
"""

import numpy as np
import pytest

from vmlmb.blocks.bounds import UnconstrainedSet
from vmlmb.blocks.lbfgs import LBFGSMemory, slot


def dense_bfgs_direction(g, pairs):
    """-H g with H from BFGS inverse updates of gamma*I, oldest pair first."""
    n = g.size
    s, y = pairs[-1]
    H = (s @ y) / (y @ y) * np.eye(n)
    for s, y in pairs:
        rho = 1.0 / (s @ y)
        V = np.eye(n) - rho * np.outer(y, s)
        H = V.T @ H @ V + rho * np.outer(s, s)
    return -H @ g


class FlippingSet(UnconstrainedSet):
    """Direction projection that reverses the direction (never descent)."""

    def project_direction(self, x, d, out=None):
        out = d.copy() if out is None else out
        np.negative(d, out=out)
        return out


@pytest.mark.unit
class TestSlots:
    """Tests for ring-buffer addressing."""

    @pytest.mark.parametrize("m", [1, 2, 3, 7])
    def test_range_and_injectivity(self, m):
        for updates in range(0, 3 * m + 2):
            mp = min(updates, m)
            newest_first = [slot(updates, m, j) for j in range(1, mp + 1)]
            assert all(0 <= k < m for k in newest_first)
            assert len(set(newest_first)) == mp
            window = [slot(updates, m, j) for j in range(0, mp)]
            assert len(set(window)) == mp

    def test_next_slot_overwrites_oldest_when_full(self):
        m = 4
        for updates in range(m, 3 * m):
            assert slot(updates, m, 0) == slot(updates, m, m)

    def test_memory_uses_module_slot(self):
        mem = LBFGSMemory(3, (2,))
        mem.updates = 5
        assert [mem.slot(j) for j in range(4)] == [slot(5, 3, j) for j in range(4)]


@pytest.mark.unit
class TestPush:
    """Tests for storing correction pairs."""

    def test_bad_memory(self):
        with pytest.raises(ValueError):
            LBFGSMemory(0, (3,))

    def test_grows_then_replaces(self):
        mem = LBFGSMemory(2, (3,))
        for i in range(1, 6):
            mem.push(np.full(3, float(i)), np.full(3, -float(i)))
            assert mem.updates == i
            assert mem.mp == min(i, 2)
            assert len(mem) == mem.mp
        # newest pair is 5, the one before is 4
        assert np.all(mem.S[mem.slot(1)] == 5.0)
        assert np.all(mem.S[mem.slot(2)] == 4.0)
        assert np.all(mem.Y[mem.slot(1)] == -5.0)

    def test_push_difference(self):
        mem = LBFGSMemory(3, (2,))
        x, x0 = np.array([3.0, 1.0]), np.array([1.0, 1.0])
        g, g0 = np.array([0.5, 2.0]), np.array([1.0, 1.0])
        mem.push_difference(x, x0, g, g0)
        k = mem.slot(1)
        assert np.array_equal(mem.S[k], [2.0, 0.0])
        assert np.array_equal(mem.Y[k], [-0.5, 1.0])

    def test_reset_keeps_pairs(self):
        mem = LBFGSMemory(3, (2,))
        mem.push(np.ones(2), np.ones(2))
        mem.reset()
        assert mem.mp == 0
        assert mem.updates == 1
        assert np.array_equal(mem.S[0], np.ones(2))


@pytest.mark.unit
class TestDirection:
    """Tests for Strang's two-loop recursion."""

    def test_empty_memory(self):
        mem = LBFGSMemory(3, (2,))
        d = np.zeros(2)
        assert mem.direction(d, np.ones(2), np.ones(2)) == (False, 0.0)

    def test_matches_dense_bfgs(self, rng, make_spd):
        n, m = 6, 4
        A = make_spd(n, rng)
        mem = LBFGSMemory(m, (n,))
        pairs = []
        for _ in range(m + 2):
            s = rng.standard_normal(n)
            y = A @ s
            mem.push(s, y)
            pairs.append((s, y))
        g = rng.standard_normal(n)
        d = np.empty(n)
        descent, df0 = mem.direction(d, g, np.ones(n), UnconstrainedSet(), np.zeros(n))
        expected = dense_bfgs_direction(g, pairs[-m:])
        assert descent
        assert np.allclose(d, expected)
        assert df0 == pytest.approx(d @ g)
        assert mem.gamma == pytest.approx((pairs[-1][0] @ pairs[-1][1]) / (pairs[-1][1] @ pairs[-1][1]))

    def test_newest_secant_equation(self, rng, make_spd):
        n = 4
        A = make_spd(n, rng)
        mem = LBFGSMemory(3, (n,))
        for _ in range(5):
            s = rng.standard_normal(n)
            mem.push(s, A @ s)
        # H y = s for the newest pair
        d = np.empty(n)
        mem.direction(d, A @ s, np.ones(n))
        assert np.allclose(d, -s)

    def test_skips_negative_curvature(self, rng, make_spd):
        n = 3
        A = make_spd(n, rng)
        s_good = rng.standard_normal(n)
        s_bad = rng.standard_normal(n)
        mem = LBFGSMemory(3, (n,))
        mem.push(s_good, A @ s_good)
        mem.push(s_bad, -(A @ s_bad))
        g = rng.standard_normal(n)
        d = np.empty(n)
        descent, _ = mem.direction(d, g, np.ones(n))
        assert descent
        assert mem.rho[mem.slot(1)] == 0.0
        assert np.allclose(d, dense_bfgs_direction(g, [(s_good, A @ s_good)]))
        assert mem.mp == 2

    def test_no_curvature_keeps_pairs(self):
        mem = LBFGSMemory(3, (2,))
        mem.push(np.array([1.0, 0.0]), np.array([-1.0, 0.0]))
        mem.push(np.array([0.0, 1.0]), np.array([0.0, -2.0]))
        d = np.empty(2)
        descent, df0 = mem.direction(d, np.ones(2), np.ones(2))
        assert not descent
        assert mem.gamma == 0.0
        # pairs are retained; later pushes overwrite them
        assert mem.mp == 2
        assert mem.updates == 2

    def test_mask_restricts_to_free_variables(self, rng):
        n = 4
        A = np.diag([1.0, 2.0, 3.0, 4.0])
        mem = LBFGSMemory(3, (n,))
        for _ in range(3):
            s = rng.standard_normal(n)
            mem.push(s, A @ s)
        w = np.array([1.0, 0.0, 1.0, 1.0])
        d = np.empty(n)
        mem.direction(d, rng.standard_normal(n), w)
        assert d[1] == 0.0

    def test_not_descent_resets_memory(self):
        mem = LBFGSMemory(3, (2,))
        mem.push(np.array([1.0, 0.0]), np.array([1.0, 0.0]))
        d = np.empty(2)
        descent, df0 = mem.direction(d, np.array([1.0, 1.0]), np.ones(2), FlippingSet(), np.zeros(2))
        assert not descent
        assert df0 >= 0
        assert mem.mp == 0
        assert mem.updates == 1

    def test_float32_storage(self, rng):
        mem = LBFGSMemory(2, (3,), np.float32)
        s = rng.standard_normal(3).astype(np.float32)
        mem.push(s, 2 * s)
        d = np.empty(3, dtype=np.float32)
        g = rng.standard_normal(3).astype(np.float32)
        descent, _ = mem.direction(d, g, np.ones(3, dtype=np.float32))
        assert descent
        assert mem.S.dtype == np.float32
        assert np.allclose(d, -0.5 * g, atol=1e-6)
