"""
Code shared by client and server: message model, frame protocol, constants
and the error taxonomy.
"""
