"""
Admission control for the public endpoints.

There is no caller authentication; callers are identified by address and charged
against fixed-window ceilings plus a global daily budget.
"""
