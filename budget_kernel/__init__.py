"""
Budget Kernel - lifecycle and expenditure control core

A transactional bookkeeping core for ministry budgets with:
- Line-item balances recomputed from approved expenditures
- Append-only budget versions with a single current pointer
- Point-in-time snapshots and structural comparison
- One approval state machine shared by budgets, expenditures and retirements
"""

__version__ = "0.1.0"
