"""nanoclaw: control plane for chat-driven, container-sandboxed agents."""

__version__ = "0.1.0"
