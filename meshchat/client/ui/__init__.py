"""
Terminal user interface: message rendering and command parsing.
"""
