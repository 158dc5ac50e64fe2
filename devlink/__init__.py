"""
devlink: pair a phone-style client with a development machine over WebSocket.

- ``devlink.session``: the client connection, auth and reconnection state machine
- ``devlink.managers``: repository, command, chat and event-log observers
- ``devlink.companion``: the development-machine side of the protocol
- ``devlink.server``: FastAPI app serving the companion endpoint
"""

__version__ = "0.1.0"
