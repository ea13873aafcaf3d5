"""Product catalog — static Stripe product ID -> credit quantity table.

Unknown product IDs map to zero credits (legacy or non-credit SKUs).
The table is injected (from app config) rather than read from a module
constant, so tests can swap in their own catalog.
"""


class ProductCatalog:
    """Pure lookup over a {product_id: credits} mapping."""

    def __init__(self, product_credits=None):
        product_credits = dict(product_credits or {})
        for product_id, credits in product_credits.items():
            if isinstance(credits, bool) or not isinstance(credits, int) or credits < 0:
                raise ValueError(
                    f"Credits for {product_id} must be a non-negative integer, got {credits!r}"
                )
        self._credits = product_credits

    @classmethod
    def from_config(cls, app_config):
        return cls(app_config.get("PRODUCT_CREDITS"))

    def credits_for(self, product_id):
        """Credits granted for one unit of `product_id` (0 if unmapped)."""
        if not product_id:
            return 0
        return self._credits.get(product_id, 0)

    def items(self):
        return sorted(self._credits.items())

    def __contains__(self, product_id):
        return product_id in self._credits

    def __len__(self):
        return len(self._credits)
