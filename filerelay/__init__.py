"""
filerelay - Raw TCP File Relay

A client streams a local file's bytes verbatim to a listening server.
The server accepts connections concurrently, runs one isolated worker
per connection, and admits a single worker at a time into its output
phase so that concurrent transfers are displayed without interleaving.
"""

__version__ = '0.1.0'

__all__ = ['__version__']
