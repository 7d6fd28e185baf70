import numpy as np
import pytest
from panhap.core.encoding import PositionEncoder, EncodingError


class TestPositionEncoder:
    @pytest.mark.parametrize('chrom,position', [(0, 0), (0, 255), (1, 1000), (9, 1_500_000), (127, 256 * 1000)])
    def test_decode_inverts_encode(self, chrom, position):
        enc = PositionEncoder(256)
        assert enc.decode(enc.encode(chrom, position)) == (chrom, position - position % 256)

    def test_layout(self):
        enc = PositionEncoder(256)
        assert enc.encode(1, 1000) == (1 << 24) | 3
        assert enc.decode_bin(enc.encode(1, 1000)) == (1, 3)

    def test_values_fit_int32(self):
        enc = PositionEncoder(1)
        value = enc.encode(PositionEncoder.MAX_CHROM_INDEX, PositionEncoder.MAX_BIN)
        assert 0 <= value <= np.iinfo(np.int32).max

    def test_bins_preserve_order_within_chromosome(self):
        enc = PositionEncoder(100)
        values = [enc.encode(2, p) for p in (0, 99, 100, 250, 10_000)]
        assert values == sorted(values)

    @pytest.mark.parametrize('chrom,position', [(-1, 0), (128, 0), (0, -5)])
    def test_out_of_range(self, chrom, position):
        with pytest.raises(EncodingError):
            PositionEncoder().encode(chrom, position)

    def test_position_too_large(self):
        with pytest.raises(EncodingError, match='encodable range'):
            PositionEncoder(1).encode(0, 1 << 24)

    def test_invalid_bin_size(self):
        with pytest.raises(EncodingError, match='positive'):
            PositionEncoder(0)

    def test_decode_negative(self):
        with pytest.raises(EncodingError):
            PositionEncoder().decode(-1)

    def test_equality(self):
        assert PositionEncoder(256) == PositionEncoder(256)
        assert PositionEncoder(256) != PositionEncoder(128)


class TestArrayEncoding:
    def test_matches_scalar(self):
        enc = PositionEncoder(256)
        chroms, positions = np.array([0, 1, 5, 127]), np.array([0, 1000, 77_777, 3_000_000])
        encoded = enc.encode_array(chroms, positions)
        assert encoded.dtype == np.int32
        np.testing.assert_array_equal(encoded, [enc.encode(c, p) for c, p in zip(chroms, positions)])
        decoded_chroms, decoded_positions = enc.decode_array(encoded)
        np.testing.assert_array_equal(decoded_chroms, chroms)
        np.testing.assert_array_equal(decoded_positions, positions - positions % 256)

    def test_shape_mismatch(self):
        with pytest.raises(EncodingError, match='shape'):
            PositionEncoder().encode_array([0, 1], [5])

    def test_out_of_range(self):
        with pytest.raises(EncodingError):
            PositionEncoder().encode_array([0, 200], [5, 5])
