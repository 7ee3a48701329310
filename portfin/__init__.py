"""portfin — price and valuation aggregation for Indian equity holdings."""

__version__ = "0.3.0"
