import numpy as np
import pytest

from strassen.codec import empty_buffer, flatten, unflatten, zero_buffer

from .conftest import random_matrix


class TestCodec:
    """Row-major flattening used on the wire."""

    def test_row_major_layout(self):
        M = np.array([[1, 2, 3], [4, 5, 6], [7, 8, 9]], dtype=np.int64)
        flat = flatten(M)
        n = 3
        for i in range(n):
            for j in range(n):
                assert flat[i * n + j] == M[i][j]

    @pytest.mark.parametrize("n", [1, 2, 5, 16])
    def test_round_trip(self, rng, n):
        M = random_matrix(rng, n)
        assert np.array_equal(unflatten(flatten(M), n), M)

    def test_flatten_copies(self):
        M = np.ones((2, 2), dtype=np.int64)
        flat = flatten(M)
        M[0, 0] = 9
        assert flat[0] == 1

    def test_unflatten_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            unflatten(np.zeros(5, dtype=np.int64), 2)

    def test_zero_buffer(self):
        buf = zero_buffer(3)
        assert buf.shape == (9,) and not buf.any()

    def test_wire_elements_are_eight_byte_ints(self):
        flat = flatten(np.array([[1, 2], [3, 4]], dtype=np.int32))
        for buf in (flat, empty_buffer(2), zero_buffer(2)):
            assert buf.dtype == np.int64
            assert buf.itemsize == 8
        assert flat.nbytes == 4 * 8
