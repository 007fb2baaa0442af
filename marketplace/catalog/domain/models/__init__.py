from .catalog import Product, ProductStatus


__all__ = ["Product", "ProductStatus"]
