"""
FastAPI dependencies shared by the billing routers.
"""

from functools import lru_cache

from leasedesk.billing.payments.gateway import ProcessorGateway, build_gateway


@lru_cache(maxsize=1)
def _stripe_gateway() -> ProcessorGateway:
    return build_gateway()


def get_processor_gateway() -> ProcessorGateway:
    """Processor gateway built from billing configuration (overridden in tests)."""
    return _stripe_gateway()
