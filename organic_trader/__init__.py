"""
Organic Volume Trader

Runs randomized, human-looking buy and sell activity against a single pool:
- Usage-balanced wallet rotation with behavioral profiles
- Volume waves (active, slow, burst, dormant) with daily and weekly rhythms
- Price-spike throttling
- Tiered transaction delivery (standard, fast, urgent, relay)
"""

__version__ = "1.0.0"
