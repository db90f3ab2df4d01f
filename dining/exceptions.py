"""
exceptions.py

Domain errors raised by the dining services. Views turn them into JSON error
responses using ``status_code``; management commands turn them into
``CommandError``.
"""


class DiningError(Exception):
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class TableNotFound(DiningError):
    status_code = 404

    def __init__(self, table_id):
        self.table_id = table_id
        super().__init__(f"Table {table_id} not found.")


class TableUnavailable(DiningError):
    status_code = 409
    default_message = "Table is not available for a new order."


class InvalidStatusTransition(DiningError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'.")


class OrderNotEditable(DiningError):
    status_code = 409
    default_message = "Order can no longer be edited."


class BillingError(DiningError):
    default_message = "Billing operation failed."


class BillAlreadyExists(BillingError):
    status_code = 409
    default_message = "Bill already exists for this order."


class PaymentRejected(BillingError):
    default_message = "Payment rejected."
