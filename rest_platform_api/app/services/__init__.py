"""
Service layer.

Each service encapsulates business logic for a domain.  Record
services take the connection to run on, so several of them can be
combined into one transaction; ``packager`` builds on them through the
internal request handler and the file storage backends.
"""
