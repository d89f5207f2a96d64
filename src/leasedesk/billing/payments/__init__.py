"""Payment ledger, processor gateway and the checkout/manual/refund paths."""
