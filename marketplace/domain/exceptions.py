class MarketplaceError(Exception):
    """Base class for order lifecycle exceptions."""

    pass


class ReservationConflict(MarketplaceError):
    """The product is not in the state a reservation transition requires."""

    def __init__(self, product_id, current_status=None):
        self.product_id = product_id
        self.current_status = current_status
        super().__init__(f"Product {product_id} cannot change availability from '{current_status}'")


class InvalidTransition(MarketplaceError):
    """The requested order status change is not in the transition table."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition order from '{current}' to '{target}'")


class TransitionNotPermitted(MarketplaceError):
    """The actor may not drive this transition."""

    pass
