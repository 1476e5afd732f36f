"""
Sparq Safety

Crisis-risk detection, severity classification and escalation
coordination for the Sparq relationship-wellness product.
"""

__version__ = "1.0.0"
