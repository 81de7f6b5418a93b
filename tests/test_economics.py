import math
import unittest

import numpy as np

from services.errors import ValidationError
from utils.economics import lifetime_return, project_savings


class EconomicsProjectionTests(unittest.TestCase):
    def test_known_case(self) -> None:
        result = project_savings(annual_savings=10_000.0, net_installed_cost=50_000.0, years=3, escalator=0.1)

        self.assertAlmostEqual(result.roi_year1_pct, 20.0)
        self.assertAlmostEqual(result.payback_years, 5.0)
        np.testing.assert_allclose([row.annual_savings for row in result.yearly], [10_000.0, 11_000.0, 12_100.0])
        np.testing.assert_allclose(
            [row.cumulative_savings for row in result.yearly], [10_000.0, 21_000.0, 33_100.0]
        )
        self.assertEqual([row.year for row in result.yearly], [1, 2, 3])
        self.assertAlmostEqual(result.total_savings, 33_100.0)

    def test_cumulative_is_running_sum_and_strictly_increasing(self) -> None:
        result = project_savings(5_000.0, 40_000.0, years=25, escalator=0.02)

        previous = 0.0
        for row in result.yearly:
            self.assertAlmostEqual(row.cumulative_savings, previous + row.annual_savings)
            self.assertGreater(row.cumulative_savings, previous)
            previous = row.cumulative_savings

    def test_no_savings_means_infinite_payback(self) -> None:
        result = project_savings(0.0, 40_000.0, years=5, escalator=0.0)

        self.assertTrue(math.isinf(result.payback_years))
        self.assertEqual(result.roi_year1_pct, 0.0)

    def test_free_installation_has_zero_roi(self) -> None:
        result = project_savings(1_000.0, 0.0, years=2)

        self.assertEqual(result.roi_year1_pct, 0.0)
        self.assertEqual(result.payback_years, 0.0)

    def test_to_frame(self) -> None:
        frame = project_savings(1_000.0, 2_000.0, years=4, escalator=0.0).to_frame()

        self.assertEqual(list(frame.columns), ["year", "annual_savings", "cumulative_savings"])
        self.assertEqual(len(frame), 4)
        self.assertAlmostEqual(float(frame["cumulative_savings"].iloc[-1]), 4_000.0)

    def test_invalid_inputs(self) -> None:
        with self.assertRaises(ValidationError):
            project_savings(1_000.0, 2_000.0, years=0)
        with self.assertRaises(ValidationError):
            project_savings(1_000.0, 2_000.0, years=2.5)
        with self.assertRaises(ValidationError):
            project_savings(1_000.0, 2_000.0, escalator=-1.0)
        with self.assertRaises(ValidationError):
            project_savings(float("nan"), 2_000.0)
        with self.assertRaises(ValidationError):
            project_savings(1_000.0, float("inf"))


class LifetimeReturnTests(unittest.TestCase):
    def test_lifetime_savings_and_roi(self) -> None:
        result = lifetime_return(2_000.0, 20_000.0, years=25)

        self.assertAlmostEqual(result.lifetime_savings, 30_000.0)
        self.assertAlmostEqual(result.roi_pct, 150.0)
        self.assertEqual(result.years, 25)

    def test_zero_cost(self) -> None:
        result = lifetime_return(2_000.0, 0.0, years=10)

        self.assertAlmostEqual(result.lifetime_savings, 20_000.0)
        self.assertEqual(result.roi_pct, 0.0)


if __name__ == "__main__":
    unittest.main()
