"""Tests for the seeded PRNG helpers."""

import pytest

from py_island.utils.alea_prng import AleaPRNG
from py_island.utils.random import create_prng, derive_prng


class TestAleaPRNG:
    """Test the Alea generator."""

    def test_same_seed_same_sequence(self):
        a = AleaPRNG("seed")
        b = AleaPRNG("seed")
        assert [a.random() for _ in range(10)] == [b.random() for _ in range(10)]

    def test_range(self):
        prng = AleaPRNG("range")
        values = [prng.random() for _ in range(1000)]
        assert all(0.0 <= v < 1.0 for v in values)

    def test_counts_draws(self):
        prng = AleaPRNG("count")
        prng.uniform(2.0, 3.0)
        prng.angle()
        assert prng.draws == 2

    def test_uniform_bounds(self):
        prng = AleaPRNG("uniform")
        assert all(-2.0 <= prng.uniform(-2.0, 5.0) < 5.0 for _ in range(200))

    def test_shuffle_is_permutation(self):
        prng = AleaPRNG("shuffle")
        items = list(range(20))
        shuffled = prng.shuffled(items)
        assert sorted(shuffled) == items
        assert shuffled != items

    def test_choice_empty(self):
        with pytest.raises(IndexError):
            AleaPRNG("x").choice([])


class TestPrngHelpers:
    def test_create_with_seed(self):
        assert create_prng("abc").seed == "abc"

    def test_create_without_seed(self):
        a = create_prng()
        b = create_prng()
        assert isinstance(a.seed, str)
        assert a.seed != b.seed

    def test_derive_does_not_consume_parent(self):
        parent = create_prng("parent")
        derive_prng(parent, "paths")
        assert parent.draws == 0

    def test_derive_labels_differ(self):
        parent = create_prng("parent")
        assert derive_prng(parent, "paths").random() != derive_prng(parent, "foliage").random()

    def test_derive_reproducible(self):
        a = derive_prng(create_prng("p"), "foliage").random()
        b = derive_prng(create_prng("p"), "foliage").random()
        assert a == b
