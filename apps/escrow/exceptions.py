"""
Escrow error taxonomy.

Every error carries enough context (order id, attempted action, current
status) for the API layer to render a message or for a caller to decide on a
retry. `common.exceptions.custom_exception_handler` maps them to HTTP codes.
"""


class EscrowError(Exception):
    code = "escrow_error"
    default_message = "Escrow operation failed."

    def __init__(self, message=None, *, order_id=None, action=None, current_status=None, **extra):
        self.message = message or self.default_message
        self.order_id = str(order_id) if order_id is not None else None
        self.action = action
        self.current_status = current_status
        self.extra = extra
        super().__init__(self.message)

    def as_dict(self):
        data = {"error": self.message, "code": self.code}
        if self.order_id is not None:
            data["order_id"] = self.order_id
        if self.action is not None:
            data["action"] = str(self.action)
        if self.current_status is not None:
            data["current_status"] = str(self.current_status)
        data.update(self.extra)
        return data


class InvalidTransition(EscrowError):
    """The action is not allowed from the order's current status."""
    code = "invalid_transition"

    def __init__(self, current_status, action, *, order_id=None, message=None):
        message = message or f"Cannot {action} an order that is {current_status}."
        super().__init__(message, order_id=order_id, action=action, current_status=current_status)


class ConflictError(EscrowError):
    """Another transition committed first (optimistic concurrency check failed)."""
    code = "conflict"
    default_message = "The order was modified concurrently; re-fetch and retry."


class ValidationError(EscrowError):
    code = "validation_error"
    default_message = "Invalid payload."


class NotFoundError(EscrowError):
    code = "not_found"
    default_message = "Not found."


class UnauthorizedAction(EscrowError):
    code = "unauthorized_action"
    default_message = "You are not allowed to perform this action."
