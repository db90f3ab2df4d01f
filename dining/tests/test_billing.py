from decimal import Decimal
from unittest import mock

from django.test import override_settings

from dining import billing, orders
from dining.exceptions import BillAlreadyExists, PaymentRejected
from dining.models import Bill, MenuItem, Order, Table, TaxSetting

from .base import DiningTestCase


class BillingTests(DiningTestCase):
    def setUp(self):
        super().setUp()
        self.table = self.make_table('D1')
        self.order = orders.create_order(self.table, [{"menu_item": self.burger, "quantity": 2}])
        # subtotal 20.00, tax 2.00, total 22.00

    def test_generate_bill_adds_service_charge(self):
        bill = billing.generate_bill(self.order)

        self.assertTrue(bill.bill_number.startswith("BILL-"))
        self.assertEqual(bill.table, self.table)
        self.assertEqual(bill.subtotal, Decimal('20.00'))
        self.assertEqual(bill.tax_amount, Decimal('2.00'))
        self.assertEqual(bill.service_charge, Decimal('2.00'))
        self.assertEqual(bill.total_amount, Decimal('24.00'))
        self.assertEqual(bill.payment_status, Bill.PaymentStatus.PENDING)

    @override_settings(SERVICE_CHARGE_RATE="0")
    def test_service_charge_can_be_disabled(self):
        bill = billing.generate_bill(self.order)
        self.assertEqual(bill.service_charge, Decimal('0.00'))
        self.assertEqual(bill.total_amount, Decimal('22.00'))

    def test_second_bill_is_refused(self):
        billing.generate_bill(self.order)
        with self.assertRaises(BillAlreadyExists):
            billing.generate_bill(self.order)

    def test_partial_then_full_payment_completes_order(self):
        orders.change_status(self.order, Order.Status.SERVED)
        bill = billing.generate_bill(self.order)

        billing.record_payment(bill, Bill.PaymentMethod.CASH, "10.00")
        self.assertEqual(bill.payment_status, Bill.PaymentStatus.PARTIAL)
        self.assertEqual(bill.remaining_amount, Decimal('14.00'))
        self.assertIsNone(bill.paid_time)

        billing.record_payment(bill, Bill.PaymentMethod.CARD, Decimal('14.00'))
        self.assertEqual(bill.payment_status, Bill.PaymentStatus.PAID)
        self.assertIsNotNone(bill.paid_time)

        self.order.refresh_from_db()
        self.table.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.COMPLETED)
        self.assertFalse(self.table.has_active_order)
        self.assertEqual(self.table.status, Table.Status.AVAILABLE)

    def test_payment_on_pending_order_leaves_order_open(self):
        bill = billing.generate_bill(self.order)
        billing.record_payment(bill, Bill.PaymentMethod.CARD, "24.00")
        self.order.refresh_from_db()
        self.assertEqual(bill.payment_status, Bill.PaymentStatus.PAID)
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_overpayment_is_rejected(self):
        bill = billing.generate_bill(self.order)
        with self.assertRaises(PaymentRejected):
            billing.record_payment(bill, Bill.PaymentMethod.CASH, "24.01")

    def test_non_positive_payment_is_rejected(self):
        bill = billing.generate_bill(self.order)
        with self.assertRaises(PaymentRejected):
            billing.record_payment(bill, Bill.PaymentMethod.CASH, "0")
        with self.assertRaises(PaymentRejected):
            billing.record_payment(bill, Bill.PaymentMethod.CASH, "-5.00")

    def test_payments_through_a_stale_instance_add_up(self):
        orders.change_status(self.order, Order.Status.SERVED)
        bill = billing.generate_bill(self.order)
        stale = Bill.objects.get(pk=bill.pk)

        billing.record_payment(bill, Bill.PaymentMethod.CASH, "10.00")
        billing.record_payment(stale, Bill.PaymentMethod.CARD, "14.00")

        self.assertEqual(stale.paid_amount, Decimal('24.00'))
        self.assertEqual(stale.payment_status, Bill.PaymentStatus.PAID)
        bill.refresh_from_db()
        self.assertEqual(bill.paid_amount, Decimal('24.00'))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.COMPLETED)

    def test_stale_instance_cannot_overpay(self):
        bill = billing.generate_bill(self.order)
        stale = Bill.objects.get(pk=bill.pk)
        billing.record_payment(bill, Bill.PaymentMethod.CASH, "20.00")

        with self.assertRaises(PaymentRejected):
            billing.record_payment(stale, Bill.PaymentMethod.CASH, "10.00")
        bill.refresh_from_db()
        self.assertEqual(bill.paid_amount, Decimal('20.00'))

    def test_bill_created_between_check_and_insert_is_refused(self):
        billing.generate_bill(self.order)
        no_bill = mock.Mock()
        no_bill.exists.return_value = False

        with mock.patch.object(Bill.objects, 'filter', return_value=no_bill):
            with self.assertRaises(BillAlreadyExists):
                billing.generate_bill(self.order)
        self.assertEqual(Bill.objects.count(), 1)

    def test_paid_bill_rejects_further_payments(self):
        bill = billing.generate_bill(self.order)
        billing.record_payment(bill, Bill.PaymentMethod.CASH, "24.00")
        with self.assertRaises(PaymentRejected):
            billing.record_payment(bill, Bill.PaymentMethod.CASH, "1.00")

    def test_unknown_method_is_rejected(self):
        bill = billing.generate_bill(self.order)
        with self.assertRaises(PaymentRejected):
            billing.record_payment(bill, "cheque", "5.00")


class FreeOrderBillingTests(DiningTestCase):
    def setUp(self):
        super().setUp()
        self.table = self.make_table('D2')
        water = MenuItem.objects.create(category=self.burger.category, name='Tap water', price=Decimal('0.00'))
        self.order = orders.create_order(self.table, [{"menu_item": water, "quantity": 1}])
        orders.change_status(self.order, Order.Status.SERVED)

    def test_zero_total_bill_can_be_settled(self):
        bill = billing.generate_bill(self.order)
        self.assertEqual(bill.total_amount, Decimal('0.00'))

        billing.record_payment(bill, Bill.PaymentMethod.CASH, "0.00")

        self.assertEqual(bill.payment_status, Bill.PaymentStatus.PAID)
        self.assertIsNotNone(bill.paid_time)
        self.order.refresh_from_db()
        self.table.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.COMPLETED)
        self.assertFalse(self.table.has_active_order)
        self.assertEqual(self.table.status, Table.Status.AVAILABLE)

    def test_zero_total_bill_still_rejects_negative_amounts(self):
        bill = billing.generate_bill(self.order)
        with self.assertRaises(PaymentRejected):
            billing.record_payment(bill, Bill.PaymentMethod.CASH, "-1.00")


class TaxSettingTests(DiningTestCase):
    def test_activate_deactivates_others(self):
        first = TaxSetting.objects.create(name="Old", tax_rate=Decimal('5.00'))
        second = TaxSetting.objects.create(name="New", tax_rate=Decimal('8.50'))
        first.activate()
        second.activate()

        first.refresh_from_db()
        self.assertFalse(first.is_active)
        self.assertEqual(TaxSetting.get_active(), second)

    def test_toggle_active_switches_off(self):
        setting = TaxSetting.objects.create(name="VAT", tax_rate=Decimal('8.50'))
        self.assertTrue(setting.toggle_active())
        self.assertFalse(setting.toggle_active())
        self.assertIsNone(TaxSetting.get_active())

    def test_formatted_rate(self):
        manual = TaxSetting(name="VAT", tax_rate=Decimal('8.50'))
        free = TaxSetting(name="None", type=TaxSetting.Type.FREE)
        self.assertEqual(manual.formatted_tax_rate, "8.50%")
        self.assertEqual(free.formatted_tax_rate, "Free (0%)")

    def test_calculate_tax(self):
        manual = TaxSetting(name="VAT", tax_rate=Decimal('8.50'))
        free = TaxSetting(name="None", type=TaxSetting.Type.FREE)
        self.assertEqual(manual.calculate_tax(Decimal('100.00')), Decimal('8.50'))
        self.assertEqual(free.calculate_tax(Decimal('100.00')), Decimal('0.00'))
