"""
navmenu - nested-set navigation menus with a public resolution API
"""
__version__ = "1.0.0"
