"""
Business logic services.

Import services from their modules directly; this package stays empty so
models can import the error taxonomy without pulling in the services.
"""
