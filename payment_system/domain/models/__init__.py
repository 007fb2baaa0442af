from .seller_balance import LedgerEntry, SellerBalance


__all__ = ["SellerBalance", "LedgerEntry"]
