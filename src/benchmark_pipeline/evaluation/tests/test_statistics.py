"""
Tests for the significance statistics.
"""
import pytest

from benchmark_pipeline.evaluation.statistics import (
    cohens_d,
    normal_cdf,
    two_proportion_z_test,
    wald_interval,
)


class TestNormalCdf:
    def test_reference_points(self):
        assert normal_cdf(0.0) == pytest.approx(0.5, abs=1e-6)
        assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-4)
        assert normal_cdf(-1.645) == pytest.approx(0.05, abs=1e-3)

    def test_symmetry(self):
        for x in (0.3, 1.0, 2.5):
            assert normal_cdf(-x) == pytest.approx(1.0 - normal_cdf(x), abs=1e-7)


class TestTwoProportionZTest:
    def test_clear_improvement_is_significant(self):
        result = two_proportion_z_test(40, 60, 100)

        assert result.z_score == pytest.approx(2.828, abs=1e-3)
        assert result.p_value < 0.01
        assert result.significant is True

    def test_small_difference_is_not_significant(self):
        result = two_proportion_z_test(49, 51, 100)

        assert result.p_value > 0.5
        assert result.significant is False

    def test_z_positive_when_second_rate_higher(self):
        assert two_proportion_z_test(40, 60, 100).z_score > 0
        assert two_proportion_z_test(60, 40, 100).z_score < 0

    def test_p_value_symmetric_in_direction(self):
        up = two_proportion_z_test(40, 60, 100)
        down = two_proportion_z_test(60, 40, 100)
        assert up.p_value == pytest.approx(down.p_value)

    def test_no_samples(self):
        result = two_proportion_z_test(0, 0, 0)
        assert (result.z_score, result.p_value, result.significant) == (0.0, 1.0, False)

    def test_zero_variance(self):
        result = two_proportion_z_test(100, 100, 100)
        assert result.p_value == 1.0

    def test_custom_alpha(self):
        assert two_proportion_z_test(64, 80, 100, alpha=0.01).significant is False
        assert two_proportion_z_test(64, 80, 100, alpha=0.05).significant is True

    def test_unequal_group_sizes(self):
        result = two_proportion_z_test(30, 60, 100, n_b=120)
        assert result.z_score > 0
        assert result.significant is True


class TestWaldInterval:
    def test_known_interval(self):
        low, high = wald_interval(76, 100)

        assert low == pytest.approx(0.6763, abs=1e-4)
        assert high == pytest.approx(0.8437, abs=1e-4)

    def test_no_samples_is_uninformative(self):
        assert wald_interval(0, 0) == (0.0, 1.0)

    def test_clamped_to_unit_interval(self):
        low, high = wald_interval(1, 100, confidence=0.99)
        assert low == 0.0
        assert 0.0 < high < 1.0

    def test_wider_at_higher_confidence(self):
        narrow = wald_interval(50, 100, confidence=0.90)
        wide = wald_interval(50, 100, confidence=0.99)
        assert wide[0] < narrow[0] and wide[1] > narrow[1]

    def test_unsupported_confidence(self):
        with pytest.raises(ValueError):
            wald_interval(50, 100, confidence=0.8)


class TestCohensD:
    def test_equal_rates(self):
        assert cohens_d(0.5, 0.5) == 0.0

    def test_direction(self):
        assert cohens_d(0.64, 0.80) == pytest.approx(0.3621, abs=1e-3)
        assert cohens_d(0.80, 0.64) < 0

    def test_degenerate_rates(self):
        assert cohens_d(0.0, 0.0) == 0.0
