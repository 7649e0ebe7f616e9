"""CV Bank — personal profile manager.

The data-access and session-consistency layer behind the CV bank UI:
owner-scoped profile storage over swappable backends, a locally cached
session kept in step with the remote identity provider, and the route
guard that decides what the current user may open.
"""

__version__ = "0.1.0"
