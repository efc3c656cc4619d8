"""ssehub — authenticated Server-Sent Events push hub.

Keeps a registry of live, authenticated event-stream connections and
routes server-generated events to the right subset of them with
best-effort, at-most-once delivery. An optional Redis backplane fans
messages out across process instances.
"""

__version__ = "0.1.0"
