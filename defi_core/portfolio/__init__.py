"""Protocol buckets shared by allocation, analytics and rebalancing.

Order matters: every three-element allocation or value vector in the package
is ``(lending, lp, farm)``.
"""

PROTOCOLS = ("lending", "lp", "farm")

PROTOCOL_LABELS = {
    "lending": "Benqi lending",
    "lp": "TraderJoe liquidity pool",
    "farm": "YieldYak farm",
}

# on-chain thresholds are expressed in basis points of 10000
BASIS_POINTS = 10000

__all__ = ["PROTOCOLS", "PROTOCOL_LABELS", "BASIS_POINTS"]
