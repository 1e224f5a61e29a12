class OrderNotFound(Exception):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InsufficientInventory(Exception):
    def __init__(self, variant_id: str, requested: int):
        super().__init__(
            f"Insufficient stock for variant {variant_id} (requested {requested})"
        )
        self.variant_id = variant_id
        self.requested = requested


class SyncLogNotFound(Exception):
    def __init__(self, log_id: str):
        super().__init__(f"Sync log {log_id} not found")
        self.log_id = log_id


class SyncLogNotRetryable(Exception):
    def __init__(self, log_id: str, status: str):
        super().__init__(f"Sync log {log_id} is {status} and cannot be retried")
        self.log_id = log_id
        self.status = status
