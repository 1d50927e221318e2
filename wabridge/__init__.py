"""
wabridge - relay a WhatsApp conversation to a local reasoning engine
"""

__version__ = "0.1.0"
__logo__ = "🌉"
