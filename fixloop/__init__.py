"""
FixLoop - scenario-driven end-to-end test orchestration with an
analyze and fix feedback loop.
"""

__version__ = "0.1.0"
