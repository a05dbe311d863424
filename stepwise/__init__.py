"""
Stepwise: natural-language browser test steps, executed with Playwright.
"""

__version__ = "0.1.0"
