"""
Identifier resolution and attachment access for the Linear GraphQL API.
"""

__version__ = "0.4.0"
