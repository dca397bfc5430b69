"""
probquant - pricing and market making for probability-denominated binary options.
"""
__version__ = "0.1.0"
