"""Policy layer (env driven).

Operators tune through environment variables:
- the tool-loop ceiling and post-processing timeouts
- admission ceilings and the daily budget
"""
