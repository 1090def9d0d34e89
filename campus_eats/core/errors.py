"""
Campus Eats — Domain errors

Three families, kept apart because callers treat them differently:
  - DataFormatError:   the inbound payload itself is unusable (webhook metadata)
  - NotFoundError:     a referenced row does not exist
  - BusinessRuleError: the request is well-formed but violates a rule

Every unit of work rolls back when one of these escapes it.
"""


class CampusEatsError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ── Data format ───────────────────────────────────────────────────────────────

class DataFormatError(CampusEatsError):
    pass


class MissingMetadataError(DataFormatError):
    pass


class MalformedMetadataError(DataFormatError):
    pass


# ── Not found ─────────────────────────────────────────────────────────────────

class NotFoundError(CampusEatsError):
    pass


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found.")


class KitchenTaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str):
        super().__init__(f"Kitchen task {task_id} not found.")


class CouponNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Coupon not found")


class UserCouponNotFoundError(NotFoundError):
    def __init__(self, user_coupon_id: str):
        super().__init__(f"User coupon {user_coupon_id} not found.")


class MenuItemNotFoundError(NotFoundError):
    def __init__(self, menu_item_id: str | None = None):
        super().__init__(
            "Menu item not found" if menu_item_id is None else f"Menu item {menu_item_id} not found"
        )


class LoyaltyAccountNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Loyalty account not found")


# ── Business rules ────────────────────────────────────────────────────────────

class BusinessRuleError(CampusEatsError):
    pass


class InsufficientPointsError(BusinessRuleError):
    def __init__(self, available: int, requested: int):
        super().__init__("Insufficient points")
        self.available = available
        self.requested = requested


class CouponInactiveError(BusinessRuleError):
    def __init__(self):
        super().__init__("Coupon is not available")


class CouponExpiredError(BusinessRuleError):
    def __init__(self):
        super().__init__("Coupon has expired")


class CouponAlreadyUsedError(BusinessRuleError):
    def __init__(self):
        super().__init__("Coupon has already been used")


class CouponNotApplicableError(BusinessRuleError):
    pass


class MenuItemUnavailableError(BusinessRuleError):
    def __init__(self, menu_item_id: str):
        super().__init__(f"Menu item {menu_item_id} is not available")


class EmptyOrderError(BusinessRuleError):
    def __init__(self):
        super().__init__("An order needs at least one item.")


class InvalidStatusError(BusinessRuleError):
    def __init__(self, value: str | None):
        super().__init__(f"Invalid status value: {value!r}.")


class OrderCancelledError(BusinessRuleError):
    def __init__(self):
        super().__init__("This order was cancelled. Its kitchen task can only be marked Completed.")


class ForbiddenError(BusinessRuleError):
    pass


class InvalidPointsAmountError(BusinessRuleError):
    def __init__(self):
        super().__init__("Points amount must be positive.")


class InvalidQuantityError(BusinessRuleError):
    def __init__(self, menu_item_id: str, quantity: int):
        super().__init__(f"Quantity for menu item {menu_item_id} must be positive, got {quantity}.")
