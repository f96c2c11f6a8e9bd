"""Remote directory clients."""
