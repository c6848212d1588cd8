class ChurnError(Exception):
    """Base error for churn analytics."""


class ChurnBackendError(ChurnError):
    """The search backend failed while computing primary churn data. Safe to retry."""
    retryable = True


class SellerNotFoundError(ChurnError):
    def __init__(self, seller_id: str):
        super().__init__(f"Seller '{seller_id}' not found")
        self.seller_id = seller_id
