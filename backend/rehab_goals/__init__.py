"""Goal planning core for psychiatric rehabilitation.

Turns a clinical assessment into an AI-recommended, fully dated
six-month → monthly → weekly goal tree.
"""

__version__ = "0.1.0"
