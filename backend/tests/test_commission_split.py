from __future__ import annotations

import unittest

from app.utils.commission import (
    delivery_fee_for_distance,
    money_major_to_minor,
    order_total,
    split_delivery_fee,
    split_delivery_fee_minor,
)


class DeliveryFeeTestCase(unittest.TestCase):
    def test_one_dollar_per_four_km_with_floor(self):
        self.assertEqual(delivery_fee_for_distance(10), 2.5)
        self.assertEqual(delivery_fee_for_distance(12.35), 3.09)
        self.assertEqual(delivery_fee_for_distance(3), 1.0)
        self.assertEqual(delivery_fee_for_distance(0), 1.0)
        self.assertEqual(delivery_fee_for_distance(None), 1.0)
        self.assertEqual(delivery_fee_for_distance(-5), 1.0)


class DeliverySplitTestCase(unittest.TestCase):
    def test_half_up_driver_share(self):
        split = split_delivery_fee(2.50)
        self.assertEqual(split["driver_earning"], 1.88)  # 187.5 -> 188
        self.assertEqual(split["platform_fee"], 0.62)
        self.assertEqual(split["delivery_fee_minor"], 250)

    def test_parts_always_add_back(self):
        for fee_minor in range(0, 2001, 7):
            driver, platform = split_delivery_fee_minor(fee_minor)
            self.assertEqual(driver + platform, fee_minor)

    def test_zero_fee_splits_to_zero(self):
        split = split_delivery_fee(0)
        self.assertEqual((split["driver_earning"], split["platform_fee"]), (0.0, 0.0))

    def test_smallest_unit_goes_to_driver(self):
        self.assertEqual(split_delivery_fee_minor(1), (1, 0))


class OrderTotalTestCase(unittest.TestCase):
    def test_total_in_minor_units(self):
        self.assertEqual(order_total(25, 2.5), 27.5)
        self.assertEqual(order_total(0.1, 0.2), 0.3)
        self.assertEqual(order_total(19.99, 1.0), 20.99)

    def test_major_to_minor_rounds_half_up(self):
        self.assertEqual(money_major_to_minor("1.005"), 101)
        self.assertEqual(money_major_to_minor(None), 0)


if __name__ == "__main__":
    unittest.main()
