from datetime import timedelta
from decimal import Decimal

from django.utils import timezone
from rest_framework.test import APIClient

from dining import billing, orders
from dining.models import Bill, Order, Reservation, Table, TaxSetting

from .base import DiningTestCase


class ApiTestCase(DiningTestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.staff)
        self.table = self.make_table('E1', capacity=4)


class TableApiTests(ApiTestCase):
    def test_list_shows_flag_and_active_order(self):
        order = self.make_order(self.table)
        response = self.client.get('/api/tables/')

        self.assertEqual(response.status_code, 200)
        row = response.json()[0]
        self.assertTrue(row['has_active_order'])
        self.assertEqual(row['active_order_number'], order.order_number)

    def test_flag_is_read_only(self):
        response = self.client.patch(
            f'/api/tables/{self.table.pk}/', {'has_active_order': True}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.table.refresh_from_db()
        self.assertFalse(self.table.has_active_order)

    def test_reconcile_endpoint(self):
        self.drift(self.table, has_active_order=True, status=Table.Status.OCCUPIED)

        response = self.client.post(f'/api/tables/{self.table.pk}/reconcile/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['changed'])
        self.assertEqual(data['before'], {'has_active_order': True, 'status': 'occupied'})
        self.assertEqual(data['after'], {'has_active_order': False, 'status': 'available'})

    def test_reconcile_all_endpoint(self):
        self.make_table('E2')
        self.drift(self.table, has_active_order=True)

        response = self.client.post('/api/tables/reconcile-all/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['tables_scanned'], 2)
        self.assertEqual(response.json()['tables_fixed'], 1)
        self.assertEqual(response.json()['failures'], [])

    def test_reconcile_requires_staff(self):
        self.client.force_authenticate(self.chef)
        response = self.client.post(f'/api/tables/{self.table.pk}/reconcile/')
        self.assertEqual(response.status_code, 403)

    def test_active_order_endpoint(self):
        empty = self.client.get(f'/api/tables/{self.table.pk}/active-order/')
        self.assertIsNone(empty.json()['order'])

        order = self.make_order(self.table, status=Order.Status.SERVED)
        response = self.client.get(f'/api/tables/{self.table.pk}/active-order/')
        self.assertEqual(response.json()['order']['order_number'], order.order_number)

    def test_set_status(self):
        response = self.client.post(
            f'/api/tables/{self.table.pk}/status/', {'status': 'maintenance'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.table.refresh_from_db()
        self.assertEqual(self.table.status, Table.Status.MAINTENANCE)

    def test_delete_with_active_reservation_is_refused(self):
        Reservation.objects.create(
            table=self.table,
            customer_name="Ada",
            party_size=2,
            reservation_date=timezone.now() + timedelta(days=1),
        )
        response = self.client.delete(f'/api/tables/{self.table.pk}/')
        self.assertEqual(response.status_code, 409)
        self.assertIn('error', response.json())
        self.assertTrue(Table.objects.filter(pk=self.table.pk).exists())

    def test_min_capacity_validation(self):
        response = self.client.post(
            '/api/tables/', {'table_number': 'e9', 'capacity': 2, 'min_capacity': 4}, format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_table_number_is_normalised(self):
        response = self.client.post('/api/tables/', {'table_number': ' e9 '}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['table_number'], 'E9')

    def test_customer_cannot_create_tables(self):
        self.client.force_authenticate(self.guest)
        response = self.client.post('/api/tables/', {'table_number': 'X1'}, format='json')
        self.assertEqual(response.status_code, 403)


class OrderApiTests(ApiTestCase):
    def create(self, **extra):
        payload = {
            'table': self.table.pk,
            'items': [{'menu_item': self.burger.pk, 'quantity': 2}],
            **extra,
        }
        return self.client.post('/api/orders/', payload, format='json')

    def test_create_order(self):
        response = self.create(priority='high')

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['status'], 'pending')
        self.assertEqual(data['priority'], 'high')
        self.assertEqual(data['subtotal'], '20.00')
        self.assertEqual(data['total_items'], 2)
        self.table.refresh_from_db()
        self.assertTrue(self.table.has_active_order)

    def test_second_order_on_busy_table_conflicts(self):
        self.create()
        response = self.create()
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {'error': 'Table already has an active order.'})

    def test_order_without_items_is_invalid(self):
        response = self.client.post('/api/orders/', {'table': self.table.pk, 'items': []}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_customer_order_is_linked_to_customer(self):
        self.client.force_authenticate(self.guest)
        response = self.create()
        self.assertEqual(response.status_code, 201)
        order = Order.objects.get(pk=response.json()['id'])
        self.assertEqual(order.customer, self.guest)
        self.assertIsNone(order.created_by)

    def test_status_change_and_invalid_transition(self):
        order_id = self.create().json()['id']

        ok = self.client.post(f'/api/orders/{order_id}/status/', {'status': 'ready'}, format='json')
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()['order']['status'], 'ready')

        bad = self.client.post(f'/api/orders/{order_id}/status/', {'status': 'pending'}, format='json')
        self.assertEqual(bad.status_code, 400)
        self.assertIn('error', bad.json())

    def test_kitchen_can_change_status_customer_cannot(self):
        order_id = self.create().json()['id']

        self.client.force_authenticate(self.chef)
        response = self.client.post(f'/api/orders/{order_id}/status/', {'status': 'preparing'}, format='json')
        self.assertEqual(response.status_code, 200)

        self.client.force_authenticate(self.guest)
        response = self.client.post(f'/api/orders/{order_id}/status/', {'status': 'ready'}, format='json')
        self.assertEqual(response.status_code, 403)

    def test_cancel_frees_table(self):
        order_id = self.create().json()['id']
        self.client.post(f'/api/orders/{order_id}/status/', {'status': 'cancelled'}, format='json')
        self.table.refresh_from_db()
        self.assertFalse(self.table.has_active_order)
        self.assertEqual(self.table.status, Table.Status.AVAILABLE)

    def test_serve_requires_ready(self):
        order_id = self.create().json()['id']
        response = self.client.post(f'/api/orders/{order_id}/serve/')
        self.assertEqual(response.status_code, 400)

    def test_item_status_marks_order_ready(self):
        data = self.create().json()
        item_id = data['items'][0]['id']
        response = self.client.post(
            f"/api/orders/{data['id']}/item-status/", {'item_id': item_id, 'status': 'ready'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['order']['status'], 'ready')

    def test_item_status_unknown_item(self):
        order_id = self.create().json()['id']
        response = self.client.post(
            f'/api/orders/{order_id}/item-status/', {'item_id': 999999, 'status': 'ready'}, format='json'
        )
        self.assertEqual(response.status_code, 404)

    def test_assign(self):
        order_id = self.create().json()['id']
        response = self.client.post(f'/api/orders/{order_id}/assign/', {'assigned_to': self.chef.pk}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['order']['assigned_to'], self.chef.pk)

        bad = self.client.post(f'/api/orders/{order_id}/assign/', {'assigned_to': self.guest.pk}, format='json')
        self.assertEqual(bad.status_code, 400)

    def test_list_filters_by_status(self):
        self.create()
        other = self.make_table('E2')
        self.make_order(other, status=Order.Status.COMPLETED)

        response = self.client.get('/api/orders/', {'status': 'pending'})
        self.assertEqual(len(response.json()), 1)
        response = self.client.get('/api/orders/', {'table': other.pk})
        self.assertEqual(response.json()[0]['status'], 'completed')

    def test_customer_only_sees_own_orders(self):
        self.create()
        self.client.force_authenticate(self.guest)
        self.assertEqual(self.client.get('/api/orders/').json(), [])

    def test_bill_and_payment_flow(self):
        order_id = self.create().json()['id']
        self.client.post(f'/api/orders/{order_id}/status/', {'status': 'served'}, format='json')

        bill = self.client.post(f'/api/orders/{order_id}/generate-bill/')
        self.assertEqual(bill.status_code, 201)
        self.assertEqual(bill.json()['total_amount'], '24.00')

        again = self.client.post(f'/api/orders/{order_id}/generate-bill/')
        self.assertEqual(again.status_code, 409)

        bill_id = bill.json()['id']
        too_much = self.client.post(
            f'/api/bills/{bill_id}/pay/', {'payment_method': 'cash', 'amount': '30.00'}, format='json'
        )
        self.assertEqual(too_much.status_code, 400)

        paid = self.client.post(
            f'/api/bills/{bill_id}/pay/', {'payment_method': 'card', 'amount': '24.00'}, format='json'
        )
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()['payment_status'], Bill.PaymentStatus.PAID)

        self.table.refresh_from_db()
        self.assertFalse(self.table.has_active_order)


class TaxAndMenuApiTests(ApiTestCase):
    def test_tax_setting_lifecycle(self):
        created = self.client.post('/api/tax-settings/', {'name': 'VAT', 'type': 'manual', 'tax_rate': '8.50'}, format='json')
        self.assertEqual(created.status_code, 201)
        setting_id = created.json()['id']

        self.assertIsNone(self.client.get('/api/tax-settings/active/').json()['tax_setting'])

        toggled = self.client.post(f'/api/tax-settings/{setting_id}/toggle-active/')
        self.assertTrue(toggled.json()['is_active'])
        active = self.client.get('/api/tax-settings/active/').json()['tax_setting']
        self.assertEqual(active['formatted_tax_rate'], '8.50%')

    def test_manual_tax_needs_rate(self):
        response = self.client.post('/api/tax-settings/', {'name': 'VAT', 'type': 'manual'}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_free_tax_drops_rate(self):
        response = self.client.post('/api/tax-settings/', {'name': 'Free', 'type': 'free', 'tax_rate': '5.00'}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertIsNone(TaxSetting.objects.get(pk=response.json()['id']).tax_rate)

    def test_toggle_menu_item_availability(self):
        response = self.client.post(f'/api/menu-items/{self.burger.pk}/toggle-availability/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['is_available'])

    def test_menu_item_used_by_order_cannot_be_deleted(self):
        orders.create_order(self.table, [{'menu_item': self.burger}])
        response = self.client.delete(f'/api/menu-items/{self.burger.pk}/')
        self.assertEqual(response.status_code, 409)


class ReservationApiTests(ApiTestCase):
    def payload(self, **extra):
        return {
            'table': self.table.pk,
            'customer_name': 'Grace',
            'party_size': 2,
            'reservation_date': (timezone.now() + timedelta(days=2)).isoformat(),
            **extra,
        }

    def test_create_confirm_cancel(self):
        created = self.client.post('/api/reservations/', self.payload(), format='json')
        self.assertEqual(created.status_code, 201)
        data = created.json()
        self.assertEqual(len(data['confirmation_code']), 8)
        self.assertIsNotNone(data['end_time'])

        confirmed = self.client.post(f"/api/reservations/{data['id']}/confirm/")
        self.assertEqual(confirmed.json()['status'], 'confirmed')

        cancelled = self.client.post(f"/api/reservations/{data['id']}/cancel/")
        self.assertEqual(cancelled.json()['status'], 'cancelled')

    def test_party_too_large_for_table(self):
        response = self.client.post('/api/reservations/', self.payload(party_size=9), format='json')
        self.assertEqual(response.status_code, 400)


class DashboardApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.order = orders.create_order(self.table, [{'menu_item': self.burger}], priority=Order.Priority.HIGH)

    def test_staff_dashboard(self):
        data = self.client.get('/api/dashboard/').json()

        self.assertEqual(data['role'], 'staff')
        self.assertEqual(data['stats']['pending_orders'], 1)
        self.assertEqual(data['stats']['occupied_tables'], 1)
        self.assertEqual(data['stats']['daily_revenue'], '0.00')
        table_row = next(t for t in data['tables'] if t['id'] == self.table.pk)
        self.assertEqual(table_row['active_order'], self.order.order_number)

    def test_kitchen_dashboard_and_realtime(self):
        self.client.force_authenticate(self.chef)

        dashboard = self.client.get('/api/dashboard/').json()
        self.assertEqual(dashboard['role'], 'kitchen')
        self.assertEqual(dashboard['stats']['high_priority_orders'], 1)

        realtime = self.client.get('/api/kitchen/realtime/').json()
        self.assertEqual(realtime['orders'][0]['order_number'], self.order.order_number)
        self.assertEqual(realtime['orders'][0]['items'][0]['menu_item_name'], 'Burger')

    def test_customer_cannot_use_kitchen_feed(self):
        self.client.force_authenticate(self.guest)
        self.assertEqual(self.client.get('/api/kitchen/realtime/').status_code, 403)
        self.assertEqual(self.client.get('/api/dashboard/').json(), {'role': 'customer', 'orders': []})

    def test_revenue_counts_paid_bills(self):
        orders.change_status(self.order, Order.Status.SERVED)
        bill = billing.generate_bill(self.order)
        billing.record_payment(bill, Bill.PaymentMethod.CASH, bill.total_amount)

        data = self.client.get('/api/dashboard/').json()
        self.assertEqual(Decimal(data['stats']['daily_revenue']), bill.total_amount)

    def test_anonymous_is_rejected(self):
        self.client.force_authenticate(None)
        self.assertIn(self.client.get('/api/dashboard/').status_code, (401, 403))


class OrderEditingApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.order = orders.create_order(self.table, [{'menu_item': self.burger, 'quantity': 2}])
        self.url = f'/api/orders/{self.order.pk}/'

    def test_patch_replaces_pending_items(self):
        response = self.client.patch(
            self.url, {'items': [{'menu_item': self.fries.pk, 'quantity': 2}]}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['subtotal'], '7.00')
        self.assertEqual(data['total_amount'], '7.70')
        self.assertEqual([i['menu_item'] for i in data['items']], [self.fries.pk])

    def test_patch_items_after_kitchen_started_conflicts(self):
        orders.change_status(self.order, Order.Status.PREPARING)
        response = self.client.patch(
            self.url, {'items': [{'menu_item': self.fries.pk}]}, format='json'
        )
        self.assertEqual(response.status_code, 409)

    def test_patch_instructions(self):
        response = self.client.patch(self.url, {'special_instructions': 'table by the window'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['special_instructions'], 'table by the window')

    def test_kitchen_cannot_edit_orders(self):
        self.client.force_authenticate(self.chef)
        response = self.client.patch(self.url, {'special_instructions': 'x'}, format='json')
        self.assertEqual(response.status_code, 403)

    def test_priority_action(self):
        response = self.client.post(f'{self.url}priority/', {'priority': 'high'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['order']['priority'], 'high')

        invalid = self.client.post(f'{self.url}priority/', {'priority': 'urgent'}, format='json')
        self.assertEqual(invalid.status_code, 400)

    def test_item_quantity_action(self):
        line = self.order.items.get()
        response = self.client.post(
            f'{self.url}item-quantity/', {'item_id': line.pk, 'quantity': 4}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['order']['subtotal'], '40.00')

        missing = self.client.post(
            f'{self.url}item-quantity/', {'item_id': 999999, 'quantity': 1}, format='json'
        )
        self.assertEqual(missing.status_code, 404)

    def test_removing_last_item_frees_table(self):
        line = self.order.items.get()
        response = self.client.post(f'{self.url}remove-item/', {'item_id': line.pk}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()['order'])
        self.table.refresh_from_db()
        self.assertFalse(self.table.has_active_order)


class QuickBookingApiTests(ApiTestCase):
    def test_add_item_opens_then_extends_order(self):
        url = f'/api/tables/{self.table.pk}/add-item/'
        first = self.client.post(url, {'menu_item': self.burger.pk, 'quantity': 2}, format='json')
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()['total_items'], 2)

        second = self.client.post(url, {'menu_item': self.fries.pk}, format='json')
        self.assertEqual(second.json()['id'], first.json()['id'])
        self.assertEqual(second.json()['total_items'], 3)
        self.assertEqual(second.json()['subtotal'], '23.50')

    def test_release_reserved_table(self):
        self.client.post(f'/api/tables/{self.table.pk}/status/', {'status': 'reserved'}, format='json')

        response = self.client.post(f'/api/tables/{self.table.pk}/release/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'available')

    def test_release_with_active_order_conflicts(self):
        self.make_order(self.table)
        self.drift(self.table, status=Table.Status.RESERVED)

        response = self.client.post(f'/api/tables/{self.table.pk}/release/')

        self.assertEqual(response.status_code, 409)
        self.table.refresh_from_db()
        self.assertEqual(self.table.status, Table.Status.RESERVED)


class SalesReportApiTests(ApiTestCase):
    url = '/api/reports/sales/'

    def setUp(self):
        super().setUp()
        paid_order = orders.create_order(self.table, [{'menu_item': self.burger, 'quantity': 2}])
        orders.change_status(paid_order, Order.Status.SERVED)
        self.paid_bill = billing.generate_bill(paid_order)
        billing.record_payment(self.paid_bill, Bill.PaymentMethod.CARD, self.paid_bill.total_amount)

        open_order = orders.create_order(self.make_table('E2'), [{'menu_item': self.fries}])
        self.open_bill = billing.generate_bill(open_order)

    def test_summary(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['total_bills'], 2)
        self.assertEqual(data['paid_bills'], 1)
        self.assertEqual(data['completed_orders'], 1)
        self.assertEqual(data['total_sales'], '24.00')
        self.assertEqual(data['tax_collected'], '2.00')
        self.assertEqual(data['service_charges'], '2.00')
        self.assertEqual(data['average_bill'], '24.00')
        self.assertEqual(data['top_items'], [
            {'menu_item_id': self.burger.pk, 'name': 'Burger', 'quantity': 2, 'revenue': '20.00'},
        ])
        self.assertEqual(data['daily'], [
            {'date': timezone.localdate().isoformat(), 'bills': 1, 'revenue': '24.00'},
        ])

    def test_date_range_filters_bills(self):
        tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()
        data = self.client.get(self.url, {'date_from': tomorrow}).json()

        self.assertEqual(data['date_from'], tomorrow)
        self.assertEqual(data['total_bills'], 0)
        self.assertEqual(data['total_sales'], '0.00')
        self.assertEqual(data['daily'], [])

    def test_invalid_date_is_rejected(self):
        self.assertEqual(self.client.get(self.url, {'date_to': 'yesterday'}).status_code, 400)
        self.assertEqual(self.client.get(self.url, {'date_to': '2024-02-30'}).status_code, 400)

    def test_staff_only(self):
        self.client.force_authenticate(self.chef)
        self.assertEqual(self.client.get(self.url).status_code, 403)

    def test_csv_export(self):
        response = self.client.get(self.url, {'export': 'csv'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'text/csv')
        self.assertIn('attachment; filename="sales_report_', response['Content-Disposition'])
        lines = response.content.decode().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith('Bill Number,Order Number,Table'))
        self.assertIn(self.paid_bill.bill_number, response.content.decode())
        self.assertIn('Burger x2', response.content.decode())

    def test_csv_export_by_payment_status(self):
        response = self.client.get(self.url, {'export': 'csv', 'payment_status': 'pending'})
        lines = response.content.decode().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn(self.open_bill.bill_number, lines[1])
