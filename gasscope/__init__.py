"""gasscope — gas-cost profiler for smart-contract transaction traces."""

__version__ = "0.1.0"
