"""Authentication glue.

Learn: Authentication itself happens elsewhere in the platform. The hub
only verifies the bearer JWT it is handed and turns its subject into the
identity a connection is registered under.
"""
